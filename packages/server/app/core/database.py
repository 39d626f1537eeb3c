"""
Database engine and session management.

PostgreSQL (asyncpg) in deployments; tests point `CH_DATABASE_URL` at SQLite
through aiosqlite. Services commit their own unit of work, so `get_session`
only commits whatever a route left pending.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings

settings = get_settings()


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Async engine for `url`. Pool sizing applies to server databases only."""
    options = {"echo": echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return create_async_engine(url, **options)


engine = create_engine_for(settings.database_url, echo=settings.debug)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables on `target` (tests and local runs; deployments migrate)."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context(factory=None):
    """Session scope for outbox jobs, ARQ tasks and WebSocket frames."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------


def insert_for(session: AsyncSession, model):
    """Return a dialect-specific INSERT for `model` supporting ON CONFLICT.

    PostgreSQL in production, SQLite under test; both speak the same
    on_conflict_do_nothing / on_conflict_do_update API.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")
