"""
CollabHub API Server

Entry point for the FastAPI application.
"""

import structlog
from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse

from app.core.config import get_settings
from app.core.database import async_session_factory
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.core.outbox import Outbox
from app.core.realtime import ConnectionManager
from app.core.redis import close_redis, connect_redis
from app.api.v1 import router as api_v1_router
from app.api.v1.auth import router as auth_router
from app.services.notifications import ArqEmailQueue, InlineEmailQueue, Notifier

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings)

    app = FastAPI(
        title="CollabHub",
        description="Projects, tasks, channels and invitations for small teams.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    register_exception_handlers(app)

    # Middleware (last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Process-wide services; Redis-backed variants are swapped in on startup
    outbox = Outbox(
        max_attempts=settings.outbox_max_attempts,
        base_delay=settings.outbox_base_delay_seconds,
    )
    app.state.session_factory = async_session_factory
    app.state.outbox = outbox
    app.state.fanout = ConnectionManager()
    app.state.notifier = Notifier(async_session_factory, outbox, InlineEmailQueue(async_session_factory))

    # Auth routes
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness checks."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database must answer a trivial query."""
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            log.warning("readiness.database_unavailable", error=str(exc))
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("collabhub.starting", redis=bool(settings.redis_url))
        redis = await connect_redis()
        if redis is None:
            return
        app.state.fanout = ConnectionManager(redis)
        await app.state.fanout.start()
        try:
            pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
        except (RedisError, OSError) as exc:
            log.warning("collabhub.email_queue_unavailable", error=str(exc))
            return
        app.state.notifier.email_queue = ArqEmailQueue(pool)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("collabhub.shutting_down")
        await app.state.outbox.stop()
        await app.state.fanout.stop()
        await app.state.notifier.email_queue.close()
        await close_redis()

    return app


app = create_app()
