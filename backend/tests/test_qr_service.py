"""Tests for encrypted purchase QR codes."""

import base64

import pytest

from app.services.qr_service import QRDecodeError, decrypt_payload, encrypt_payload, render_qr_png


class TestQRPayload:

    def test_round_trip(self):
        token = encrypt_payload("ticket", 42, 7)
        assert decrypt_payload(token) == {"type": "ticket", "id": 42, "club_id": 7}

    def test_token_is_opaque_and_randomized(self):
        first = encrypt_payload("menu", 1, 1)
        second = encrypt_payload("menu", 1, 1)
        assert first != second
        assert b"menu" not in base64.b64decode(first)

    def test_wrong_key(self):
        token = encrypt_payload("ticket", 42, 7, secret="key-one")
        with pytest.raises(QRDecodeError):
            decrypt_payload(token, secret="key-two")

    @pytest.mark.parametrize("token", ["not base64!!", "", base64.b64encode(b"short").decode()])
    def test_garbage(self, token):
        with pytest.raises(QRDecodeError):
            decrypt_payload(token)

    def test_included_menu_token(self):
        token = encrypt_payload("menu_from_ticket", 42, 7)
        assert decrypt_payload(token)["type"] == "menu_from_ticket"

    def test_unknown_purchase_type(self):
        with pytest.raises(ValueError):
            encrypt_payload("voucher", 1, 1)


def test_render_png():
    png = render_qr_png(encrypt_payload("ticket", 42, 7))
    assert png.startswith(b"\x89PNG\r\n\x1a\n")
