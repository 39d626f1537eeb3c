"""
Authentication endpoints.

- Email/Password registration & login
- Access token in the response body, refresh token in an httponly cookie
- Refresh (rotates the refresh token) and logout (revokes it)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.models.user import RefreshToken
from app.services import users as user_service
from collabhub_shared.schemas.users import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)

settings = get_settings()
router = APIRouter()


def _set_refresh_cookie(response: Response, refresh: RefreshToken) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh.token,
        httponly=True,
        secure=not settings.debug,  # allow non-HTTPS in dev
        samesite="lax",
        path="/auth",
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register a new user with email/password and start a session."""
    user = await user_service.register_user(session, body)
    access, refresh = await user_service.issue_tokens(session, user)
    _set_refresh_cookie(response, refresh)
    return TokenResponse(access_token=access, user=UserRead.model_validate(user))


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password."""
    user = await user_service.authenticate_user(session, body)
    access, refresh = await user_service.issue_tokens(session, user)
    _set_refresh_cookie(response, refresh)
    return TokenResponse(access_token=access, user=UserRead.model_validate(user))


@router.post("/refresh", response_model=TokenResponse)
async def refresh_session(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Exchange the refresh cookie for a new access token (and a new cookie)."""
    token = request.cookies.get(settings.refresh_cookie_name)
    user, access, refresh = await user_service.rotate_refresh_token(session, token)
    _set_refresh_cookie(response, refresh)
    return TokenResponse(access_token=access, user=UserRead.model_validate(user))


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Revoke the refresh token and clear its cookie."""
    await user_service.revoke_refresh_token(session, request.cookies.get(settings.refresh_cookie_name))
    response.delete_cookie(settings.refresh_cookie_name, path="/auth")
    return {"message": "Logged out"}
