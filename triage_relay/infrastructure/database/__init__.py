"""
Database Infrastructure
=======================

Process-wide async engine and session factory.

PostgreSQL through asyncpg in deployment; SQLite through aiosqlite for local
runs and tests. The only table is the idempotency record table, owned by the
triage module.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from triage_relay.config import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _normalize_url(url: str) -> str:
    # asyncpg accepts ssl=, not libpq's sslmode=
    return url.replace("sslmode=", "ssl=")


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session factory. Called once from the app lifespan.

    No connection is opened here; an unreachable database only shows up on
    first use, where the idempotency store fails open.
    """
    global _engine, _session_maker

    url = _normalize_url(database_url or settings.database_url)
    options = {"echo": settings.debug, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)

    _engine = create_async_engine(url, **options)
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory handed to repositories at construction time."""
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_maker


async def create_tables() -> None:
    """Create missing tables. Schema migrations are out of scope."""
    from triage_relay.triage.infrastructure import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of pooled connections at shutdown."""
    global _engine, _session_maker

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None
