"""
Shared fixtures: a fresh SQLite database per test, sessions bound to it,
factories for agencies and alerts, and an HTTP client with ``get_db``
pointed at the test database.
"""

from __future__ import annotations

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_CREATE_TABLES"] = "false"
os.environ["ALERT_REAPER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.agencies.directory import register_agency
from backend.app.alerts.store import create_alert
from backend.app.core.database import build_engine, get_db, init_db
from backend.app.main import app


def in_hours(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rescueconnect.db'}")
    await init_db(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_agency(session):
    """Register an agency at ``[longitude, latitude]``."""

    async def _make(name: str = "Agency", coordinates=(0.0, 0.0), **kwargs):
        return await register_agency(
            session, name=name, coordinates=list(coordinates), **kwargs,
        )

    return _make


@pytest.fixture
def make_alert(session):
    """Create an alert from ``creator`` with valid defaults."""

    async def _make(creator_id: str, **overrides):
        fields = dict(
            title="Flash flood warning",
            message="River levels rising; avoid low-lying roads.",
            severity="high",
            coordinates=[0.0, 0.0],
            radius=10.0,
            expires_at=in_hours(1),
            recipients=None,
        )
        fields.update(overrides)
        return await create_alert(session, creator_id=creator_id, **fields)

    return _make


@pytest.fixture
async def client(session_factory):
    async def _override_get_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
