"""QR codes for purchases.

The QR content is an opaque token: the JSON payload ``{"t", "i", "c"}``
(type, purchase id, club id) encrypted with AES-256-CBC under a key
derived from ``settings.qr_encryption_key``, then base64(iv + ciphertext).
Scanners decrypt the token server-side; the redemption flow lives
elsewhere.
"""

import base64
import hashlib
import io
import json
import logging
import os
from typing import Optional

import qrcode
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.config import settings

logger = logging.getLogger(__name__)

IV_SIZE = 16

# menu_from_ticket: the bundled menu items of a ticket purchase, keyed by its id
PURCHASE_TYPES = ("ticket", "menu", "menu_from_ticket")


class QRDecodeError(ValueError):
    """Token is not valid base64 / ciphertext / payload."""


def _key(secret: Optional[str] = None) -> bytes:
    return hashlib.sha256((secret or settings.qr_encryption_key).encode("utf-8")).digest()


def encrypt_payload(purchase_type: str, purchase_id: int, club_id: int, secret: Optional[str] = None) -> str:
    if purchase_type not in PURCHASE_TYPES:
        raise ValueError(f"Unknown purchase type {purchase_type!r}")
    plaintext = json.dumps(
        {"t": purchase_type, "i": purchase_id, "c": club_id}, separators=(",", ":")
    ).encode("utf-8")

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    iv = os.urandom(IV_SIZE)
    encryptor = Cipher(algorithms.AES(_key(secret)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt_payload(token: str, secret: Optional[str] = None) -> dict:
    """Inverse of ``encrypt_payload``. Returns ``{"type", "id", "club_id"}``."""
    try:
        raw = base64.b64decode(token, validate=True)
        iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]
        if len(iv) != IV_SIZE or not ciphertext:
            raise ValueError("token too short")
        decryptor = Cipher(algorithms.AES(_key(secret)), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        data = json.loads(unpadder.update(padded) + unpadder.finalize())
        return {"type": data["t"], "id": data["i"], "club_id": data["c"]}
    except (ValueError, KeyError, TypeError) as e:
        raise QRDecodeError(f"Invalid QR token: {e}") from e


def render_qr_png(token: str, box_size: int = 8, border: int = 2) -> bytes:
    """PNG image bytes of a QR code encoding ``token``."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
