import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
)


def async_url(url: str) -> str:
    """DATABASE_URL as users write it -> the async driver SQLAlchemy needs."""
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _pool_options(url: str) -> Tuple[Dict[str, Any], Optional[int]]:
    kw: Dict[str, Any] = dict(pool_pre_ping=True)
    if not url.startswith("postgresql+asyncpg://"):
        return kw, None
    pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
    kw.update(
        pool_size=pool_size,
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
    )
    return kw, pool_size


def make_async_engine(
    database_url: str,
) -> Tuple[AsyncEngine, async_sessionmaker,
           Callable[[], AsyncIterator[None]]]:
    """Build the engine, a session factory and a ``gated()`` context manager.

    Ticket stores wrap every transaction in ``gated()`` so webhook bursts
    queue on a semaphore sized to the pool instead of timing out inside it.
    """
    url = async_url(database_url)
    kw, pool_size = _pool_options(url)
    engine = create_async_engine(url, **kw)

    if url.startswith("sqlite+aiosqlite://"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cur.execute(pragma)
            cur.close()

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    gate_limit = int(os.getenv("DB_GATE_LIMIT", pool_size or 10))
    db_gate = asyncio.Semaphore(max(1, gate_limit))

    @asynccontextmanager
    async def gated():
        async with db_gate:
            yield

    return engine, SessionAsync, gated
