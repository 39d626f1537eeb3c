"""
User service: registration, credential checks and refresh-token lifecycle.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from app.core.errors import Conflict, Forbidden, Unauthenticated
from app.models.base import as_utc, utcnow
from app.models.user import RefreshToken, User
from collabhub_shared.schemas.users import LoginRequest, RegisterRequest

log = structlog.get_logger()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def register_user(session: AsyncSession, body: RegisterRequest) -> User:
    if await get_user_by_email(session, body.email):
        raise Conflict("Email already registered")

    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        name=body.name,
    )
    session.add(user)
    await session.commit()
    log.info("user.registered", user_id=str(user.id))
    return user


async def authenticate_user(session: AsyncSession, body: LoginRequest) -> User:
    user = await get_user_by_email(session, body.email)
    if not user or not verify_password(body.password, user.password_hash):
        log.warning("auth.login_failure", reason="bad_credentials")
        raise Unauthenticated("Invalid email or password")
    log.info("auth.login_success", user_id=str(user.id))
    return user


async def issue_tokens(session: AsyncSession, user: User) -> tuple[str, RefreshToken]:
    """Create an access token and a persisted refresh token for `user`."""
    token, expires_at = create_refresh_token(user.id)
    refresh = RefreshToken(token=token, user_id=user.id, expires_at=expires_at)
    session.add(refresh)
    await session.commit()
    return create_access_token(user.id), refresh


async def rotate_refresh_token(
    session: AsyncSession, token: str | None
) -> tuple[User, str, RefreshToken]:
    """Swap a valid refresh token for a new pair.

    The presented token must verify, still be stored, be unexpired and belong
    to the token's subject; it is deleted as part of the rotation.
    """
    if not token:
        raise Unauthenticated("Refresh token missing")
    user_id = decode_refresh_token(token)

    result = await session.execute(select(RefreshToken).where(RefreshToken.token == token))
    stored = result.scalar_one_or_none()
    if (
        stored is None
        or stored.user_id != user_id
        or as_utc(stored.expires_at) <= utcnow()
    ):
        raise Forbidden("Invalid refresh token")

    user = await session.get(User, user_id)
    if not user:
        raise Forbidden("Invalid refresh token")

    await session.delete(stored)
    access, refresh = await issue_tokens(session, user)
    log.info("auth.token_refreshed", user_id=str(user.id))
    return user, access, refresh


async def revoke_refresh_token(session: AsyncSession, token: str | None) -> None:
    if not token:
        return
    await session.execute(delete(RefreshToken).where(RefreshToken.token == token))
    await session.commit()
