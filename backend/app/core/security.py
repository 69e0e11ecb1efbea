"""Security utilities: JWT tokens and buyer identity resolution."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import PyJWTError

from app.core.config import settings
from app.services.cart_lock_service import CartIdentity

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{8,128}$")


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with a unique JTI."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token. Returns None when invalid or expired."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True}
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None


def _bearer_subject(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1]
    payload = decode_access_token(token) if token else None
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return str(sub)


async def get_cart_identity(
    request: Request,
    x_session_id: Annotated[Optional[str], Header(alias=SESSION_HEADER)] = None,
) -> CartIdentity:
    """Buyer identity for cart and checkout routes.

    Checks in order:
    1. Authorization: Bearer <token> header (``sub`` is the user id)
    2. X-Session-Id header for anonymous buyers
    """
    user_id = _bearer_subject(request)
    if user_id:
        return CartIdentity(user_id=user_id)

    if x_session_id:
        if not _SESSION_ID_RE.match(x_session_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Malformed {SESSION_HEADER} header",
            )
        return CartIdentity(session_id=x_session_id)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Sign in or send an {SESSION_HEADER} header",
        headers={"WWW-Authenticate": "Bearer"},
    )


CurrentIdentity = Annotated[CartIdentity, Depends(get_cart_identity)]
