from typing import Optional, Callable, AsyncContextManager
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ._base import TicketStore
from ._file import FileTicketStore
from ._sql import SqlTicketStore, create_schema
from ._redis import RedisTicketStore

Gated = Callable[[], AsyncContextManager[None]]

BACKENDS = ("file", "sql", "redis")


# Factory keeps server.py simple and constructor-agnostic:
def new_store(backend: str, *, path: Optional[str] = None,
              sessionmaker: Optional[Callable[[], AsyncSession]] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None) -> TicketStore:
    backend = backend.lower()
    if backend not in BACKENDS:
        raise RuntimeError(f"unknown ticket store backend: {backend!r}")
    if backend == "sql":
        if sessionmaker is None or gated is None:
            raise RuntimeError(
                "TicketStore(sql) requires sessionmaker= and gated="
            )
        return SqlTicketStore(sessionmaker=sessionmaker, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError("TicketStore(redis) requires r=redis.Redis")
        return RedisTicketStore(r)
    if path is None:
        raise RuntimeError("TicketStore(file) requires path=")
    return FileTicketStore(path)


__all__ = [
    "TicketStore", "FileTicketStore", "SqlTicketStore", "RedisTicketStore",
    "create_schema", "new_store", "BACKENDS",
]
