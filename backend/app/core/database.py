"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite locally).

Provides:
    • Async engine and session factory
    • Dependency injection for FastAPI routes
    • Base model for ORM entities
    • Dialect-aware insert-or-ignore used for set-like tables

Usage:
    from backend.app.core.database import get_db

    @router.get("/agencies/{agency_id}")
    async def read_agency(agency_id: str, db: AsyncSession = Depends(get_db)):
        ...
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, AsyncGenerator, Dict, List, Sequence

from sqlalchemy import DateTime, Table, TypeDecorator
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    kwargs: Dict[str, Any] = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


# ── Engine ──
engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

# ── Session Factory ──
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Column types ──
class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.

    SQLite drops tzinfo, so values are normalised to UTC before binding and
    re-tagged as UTC on load; comparisons in SQL then stay consistent.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Dependency ──
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Set-like inserts ──
async def insert_ignore(
    session: AsyncSession,
    table: Table,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
) -> None:
    """
    INSERT rows, silently skipping ones that hit the unique constraint.

    A single ``ON CONFLICT DO NOTHING`` statement, so concurrent writers
    adding the same member to a set never fail or overwrite each other.
    """
    if not rows:
        return
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table)
    else:
        raise NotImplementedError(f"insert_ignore does not support dialect '{dialect}'")
    stmt = stmt.values(rows).on_conflict_do_nothing(index_elements=list(conflict_columns))
    await session.execute(stmt)


# ── Lifecycle ──
async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables (dev/test; production schemas are migrated separately)."""
    # Register models on Base.metadata
    from backend.app.agencies import models as _agency_models  # noqa: F401
    from backend.app.alerts import models as _alert_models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(bind: AsyncEngine = engine) -> None:
    """Dispose engine connections."""
    await bind.dispose()
    logger.info("Database connections closed")
