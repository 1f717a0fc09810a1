"""Run-log database wiring.

One async engine per process, built from ``canvasflow.config``. SQLite
(aiosqlite) is the development default; Postgres URLs are rewritten to the
asyncpg driver. Routes take sessions from ``get_session``; the SQL log sink
opens its own through ``get_session_ctx`` because runs outlive requests.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import sqlalchemy
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from canvasflow import config

# Driver prefixes rewritten to their async equivalents
_ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
)


def normalize_database_url(url: str) -> str:
    """Return ``url`` with a sync driver prefix swapped for the async one."""
    for prefix, replacement in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def engine_options(url: str) -> Dict[str, Any]:
    """Keyword arguments for create_async_engine; SQLite has no pool sizing."""
    options: Dict[str, Any] = {"echo": config.DB_ECHO}
    if not is_sqlite(url):
        options.update(
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return options


DATABASE_URL = normalize_database_url(config.DATABASE_URL)

engine: AsyncEngine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the run-log tables."""
    pass


@asynccontextmanager
async def get_session_ctx() -> AsyncGenerator[AsyncSession, None]:
    """Session committed on clean exit, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency wrapping get_session_ctx."""
    async with get_session_ctx() as session:
        yield session


async def init_db():
    """Create the run_logs table (and WAL mode on SQLite)."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    async with engine.begin() as conn:
        if is_sqlite(DATABASE_URL):
            for pragma in _SQLITE_PRAGMAS:
                await conn.execute(sqlalchemy.text(pragma))
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()
