import os
from contextlib import asynccontextmanager

import pytest
import redis.asyncio as redis

from poolpass.config import EventInfo
from poolpass.gateway import MockPay
from poolpass.infra.sql import make_async_engine
from poolpass.model.ticketstore import (
    FileTicketStore, RedisTicketStore, SqlTicketStore, create_schema,
)
from poolpass.reconcile import ReconciliationEngine

from tests.support import SECRET, CountingArtifacts, RecordingNotifier

# Redis-backed tests only run against an explicitly provided, disposable DB.
TEST_REDIS_URL = os.getenv("POOLPASS_TEST_REDIS_URL", "")


@asynccontextmanager
async def open_sql_store(tmp_path):
    engine, SessionAsync, gated = make_async_engine(
        f"sqlite:///{tmp_path}/tickets.db"
    )
    async with engine.begin() as conn:
        await create_schema(conn)
    try:
        yield SqlTicketStore(sessionmaker=SessionAsync, gated=gated)
    finally:
        await engine.dispose()


@asynccontextmanager
async def open_redis_store():
    r = redis.from_url(TEST_REDIS_URL, decode_responses=True)
    await r.flushdb()
    try:
        yield RedisTicketStore(r)
    finally:
        await r.flushdb()
        await r.aclose()


@pytest.fixture
def file_store(tmp_path):
    return FileTicketStore(str(tmp_path / "tickets.json"))


@pytest.fixture
async def sql_store(tmp_path):
    async with open_sql_store(tmp_path) as s:
        yield s


@pytest.fixture(params=["file", "sql", "redis"])
async def store(request, tmp_path):
    if request.param == "file":
        yield FileTicketStore(str(tmp_path / "tickets.json"))
    elif request.param == "sql":
        async with open_sql_store(tmp_path) as s:
            yield s
    else:
        if not TEST_REDIS_URL:
            pytest.skip("POOLPASS_TEST_REDIS_URL not set")
        async with open_redis_store() as s:
            yield s


@pytest.fixture
def gateway():
    return MockPay()


@pytest.fixture
def artifacts(tmp_path):
    return CountingArtifacts(str(tmp_path / "artifacts"), EventInfo())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(file_store, gateway, artifacts, notifier):
    return ReconciliationEngine(
        store=file_store, gateway=gateway, artifacts=artifacts,
        notifier=notifier, webhook_secret=SECRET,
    )
