"""Async SQLAlchemy engine and session factory.

Provides:
- Base: Declarative base for all company-scoped tables
- get_engine(): Lazily created async engine singleton
- get_session(): Async generator yielding an AsyncSession (repository session_factory)
- is_missing_table_error(): Detects queries against tables that were never migrated
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.app.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all persistence models.

    Every table carries a company_id column; isolation between companies
    is enforced by the repositories, which scope every query by company.
    """


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Error Helpers ───────────────────────────────────────────────────────────

UNDEFINED_TABLE_SQLSTATE = "42P01"


def is_missing_table_error(exc: BaseException) -> bool:
    """Return True if exc reports a relation that does not exist.

    Deployments that have not run the latest migration still serve
    contacts; callers use this to degrade lookups to empty results.
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == UNDEFINED_TABLE_SQLSTATE:
        return True
    if type(orig).__name__ == "UndefinedTableError":
        return True
    return "does not exist" in str(orig) and "relation" in str(orig)


# ── Database Initialization ─────────────────────────────────────────────────


async def check_db() -> None:
    """Run a trivial query to verify connectivity."""
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
