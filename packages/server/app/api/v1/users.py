"""
User endpoints.

GET /api/v1/users/me: the caller's profile
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.auth import get_current_user
from app.models.user import User
from collabhub_shared.schemas.users import UserRead

router = APIRouter()


@router.get("/me", response_model=UserRead)
async def read_me(user: User = Depends(get_current_user)):
    return user
