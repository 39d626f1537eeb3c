"""
Authentication for CollabHub.

Supports:
- Email/Password credentials (bcrypt)
- Short-lived access JWTs sent as `Authorization: Bearer <token>`
- Long-lived refresh JWTs persisted in `refresh_tokens` and sent as an httponly cookie
- WebSocket handshake authentication via `?token=<access token>`
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import Unauthenticated
from app.models.user import User

log = structlog.get_logger()
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def _encode(user_id: uuid.UUID, kind: str, secret: str, lifetime: timedelta) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    exp = now + lifetime
    payload = {
        "sub": str(user_id),
        "type": kind,
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm), exp


def _decode(token: str, kind: str, secret: str) -> uuid.UUID:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired token")
    if payload.get("type") != kind:
        raise Unauthenticated("Invalid token type")
    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise Unauthenticated("Invalid token subject")


def create_access_token(user_id: uuid.UUID) -> str:
    """Issue a short-lived access token."""
    token, _ = _encode(
        user_id, ACCESS, settings.access_token_secret,
        timedelta(minutes=settings.access_token_expire_minutes),
    )
    return token


def create_refresh_token(user_id: uuid.UUID) -> tuple[str, datetime]:
    """Issue a refresh token. Returns (token, expires_at); the caller persists it."""
    return _encode(
        user_id, REFRESH, settings.refresh_token_secret,
        timedelta(days=settings.refresh_token_expire_days),
    )


def decode_access_token(token: str) -> uuid.UUID:
    """Verify an access token and return its subject. Raises Unauthenticated."""
    return _decode(token, ACCESS, settings.access_token_secret)


def decode_refresh_token(token: str) -> uuid.UUID:
    """Verify a refresh token and return its subject. Raises Unauthenticated."""
    return _decode(token, REFRESH, settings.refresh_token_secret)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

async def authenticate_token(session: AsyncSession, token: Optional[str]) -> User:
    """Resolve an access token to its user. Shared by HTTP and WebSocket auth."""
    if not token:
        raise Unauthenticated("Authentication required")
    user_id = decode_access_token(token)
    user = await session.get(User, user_id)
    if not user:
        raise Unauthenticated("User not found")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Main authentication dependency: Bearer access token."""
    token = credentials.credentials if credentials else None
    user = await authenticate_token(session, token)
    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user
