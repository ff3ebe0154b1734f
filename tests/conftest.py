"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis.aioredis import FakeRedis
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from rentals import cache
from rentals.db import Base, get_session, install_overlap_guard
from rentals.deps import (
    can_manage_calendar,
    can_view_stats,
    get_current_user,
    get_notifications_client,
)
from rentals.routers import apartments, booking, promo

from .factories import make_admin, make_guest, make_owner

# ---------------------------------------------------------------------------
# Redis: every test gets a private in-memory instance
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    redis = FakeRedis(decode_responses=True)
    monkeypatch.setattr(cache, "_redis", redis)
    return redis


# ---------------------------------------------------------------------------
# Database: in-memory SQLite with the overlap guard installed
# ---------------------------------------------------------------------------


@pytest.fixture()
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await install_overlap_guard(conn)
    yield eng
    await eng.dispose()


@pytest.fixture()
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as s:
        yield s


# ---------------------------------------------------------------------------
# Default no-op client mocks, so tests never make real HTTP calls
# ---------------------------------------------------------------------------


def _noop_notifications_client():
    mock = MagicMock()
    mock.notify = AsyncMock(return_value=True)
    return mock


# ---------------------------------------------------------------------------
# App builder used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, notifications_client=None) -> FastAPI:
    """
    Fresh FastAPI app with identity/role dependencies overridden to return
    `current_user` unconditionally, and a dummy DB session (CRUD is patched
    per test, so the session is never touched).
    """
    app = FastAPI()
    app.include_router(apartments.router)
    app.include_router(booking.router)
    app.include_router(promo.router)

    async def _user():
        return current_user

    for dep in (get_current_user, can_manage_calendar, can_view_stats):
        app.dependency_overrides[dep] = _user

    nc = notifications_client if notifications_client is not None else _noop_notifications_client()
    app.dependency_overrides[get_notifications_client] = lambda: nc
    app.dependency_overrides[get_session] = lambda: MagicMock()

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def guest_client():
    return TestClient(build_app(make_guest()), raise_server_exceptions=True)


@pytest.fixture()
def owner_client():
    return TestClient(build_app(make_owner()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    App with NO identity overrides.
    Use this when you want the real gateway-header deps to run so you can
    assert 401/403/422.
    """
    app = FastAPI()
    app.include_router(apartments.router)
    app.include_router(booking.router)
    app.include_router(promo.router)
    app.dependency_overrides[get_session] = lambda: MagicMock()
    app.dependency_overrides[get_notifications_client] = _noop_notifications_client
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, notifications_client=None) -> TestClient:
        return TestClient(
            build_app(current_user, notifications_client=notifications_client),
            raise_server_exceptions=True,
        )

    return _make
