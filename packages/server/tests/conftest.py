"""
Shared fixtures for server tests.

Each test gets its own SQLite database file (aiosqlite), a fresh application
wired to it, an outbox with no retry delay, a fake email queue that records
jobs, and a local (Redis-less) fanout.
"""

from __future__ import annotations

import os

os.environ.setdefault("CH_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CH_REDIS_URL", "")
os.environ.setdefault("CH_LOG_JSON", "false")

import uuid
from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.core.auth import create_access_token, hash_password
from app.core.database import create_engine_for, get_session, init_db
from app.core.outbox import Outbox
from app.core.realtime import ConnectionManager
from app.main import create_app
from app.models.channel import Channel, ChannelMember
from app.models.project import Project, UserProject
from app.models.user import User
from app.services.notifications import Notifier

PASSWORD = "Sup3r$ecret"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeEmailQueue:
    """Records enqueued jobs instead of talking to Redis."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, dict[str, Any]]] = []

    async def enqueue(self, function: str, **kwargs: Any) -> None:
        self.jobs.append((function, kwargs))

    async def close(self) -> None:
        return None

    def named(self, function: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.jobs if name == function]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
async def outbox():
    box = Outbox(max_attempts=3, base_delay=0)
    yield box
    await box.stop()


@pytest.fixture
def email_queue():
    return FakeEmailQueue()


@pytest.fixture
def notifier(session_factory, outbox, email_queue):
    return Notifier(session_factory, outbox, email_queue)


@pytest.fixture
def fanout():
    return ConnectionManager()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def app(session_factory, outbox, notifier, fanout):
    application = create_app()

    async def override_get_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    application.dependency_overrides[get_session] = override_get_session
    application.state.session_factory = session_factory
    application.state.outbox = outbox
    application.state.notifier = notifier
    application.state.fanout = fanout
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture
def make_user(session_factory):
    async def _make(email: Optional[str] = None, name: Optional[str] = None) -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            email=(email or f"user-{suffix}@example.com").lower(),
            password_hash=PASSWORD_HASH,
            name=name if name is not None else f"User {suffix}",
        )
        async with session_factory() as s:
            s.add(user)
            await s.commit()
        return user

    return _make


@pytest.fixture
def make_project(session_factory):
    async def _make(owner: User, members: Optional[list[tuple[User, str]]] = None, name: str = "Apollo") -> Project:
        """Create a project owned by `owner`; `members` lists (user, project role) pairs."""
        project = Project(name=name, description="Test project")
        async with session_factory() as s:
            s.add(project)
            await s.flush()
            s.add(UserProject(user_id=owner.id, project_id=project.id, role="OWNER"))
            for user, role in members or []:
                s.add(UserProject(user_id=user.id, project_id=project.id, role=role))
            await s.commit()
        return project

    return _make


@pytest.fixture
def make_channel(session_factory):
    async def _make(
        project: Optional[Project],
        type: str = "PROJECT_GENERAL",
        members: Optional[list[tuple[User, str]]] = None,
        name: str = "general",
    ) -> Channel:
        """Create a channel with explicit ChannelMember rows only for `members`."""
        channel = Channel(name=name, type=type, project_id=project.id if project else None)
        async with session_factory() as s:
            s.add(channel)
            await s.flush()
            for user, role in members or []:
                s.add(ChannelMember(channel_id=channel.id, user_id=user.id, role=role))
            await s.commit()
        return channel

    return _make
