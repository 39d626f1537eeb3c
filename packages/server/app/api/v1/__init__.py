"""
API v1 Router

Authentication lives outside this router, under /auth.
"""

from fastapi import APIRouter

from collabhub_shared.schemas.common import ErrorResponse
from . import channels, invitations, notifications, projects, realtime, tasks, users

# Documented error envelope for every v1 route
ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409)}

router = APIRouter(responses=ERROR_RESPONSES)

router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(channels.router, prefix="/channels", tags=["Channels"])
router.include_router(invitations.router, prefix="/invitations", tags=["Invitations"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(realtime.router, tags=["Realtime"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/users/me",
            "/projects",
            "/tasks",
            "/channels",
            "/invitations",
            "/notifications",
            "/ws",
        ],
    }
