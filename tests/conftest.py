"""Pytest fixtures for the CloudVote test suite.

The store is replaced by an in-memory fake shaped like an asyncpg pool, so
the suite runs without PostgreSQL. The fake records every statement, counts
writes, and can be told to fail individual statements.
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List

import asyncpg
import httpx
import pytest

from cloudvote.vote_api.aggregation import SELECT_TALLY, AggregationView
from cloudvote.vote_api.audit import INSERT_AUDIT, SELECT_AUDIT_TAIL, AuditDispatcher, AuditLog
from cloudvote.vote_api.config import Settings
from cloudvote.vote_api.database import SCHEMA_SQL, ConnectionPool, QueryExecutor
from cloudvote.vote_api.ledger import INSERT_VOTE, VoteLedger
from cloudvote.vote_api.main import create_app

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class FakeStore:
    """In-memory votes and system_logs tables."""

    def __init__(self):
        self.votes: List[Dict] = []
        self.logs: List[Dict] = []
        self.statements: List[tuple] = []
        self.writes = 0
        self.schema_created = False
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._ticks = 0

        # Fault injection
        self.unreachable = False
        self.reject_connections = False
        self.fail_votes = False
        self.fail_audit = False
        self.fail_tally = False
        self.fail_tail = False

    def _now(self) -> datetime:
        self._ticks += 1
        return BASE_TIME + timedelta(milliseconds=self._ticks)

    async def fetch(self, sql: str, *args):
        self.statements.append((sql, args))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._run(sql, args)
        finally:
            self.in_flight -= 1

    def _run(self, sql: str, args: tuple):
        if sql == INSERT_VOTE:
            if self.fail_votes:
                raise ConnectionResetError("connection reset by peer")
            self.writes += 1
            row = {"id": len(self.votes) + 1, "candidate": args[0], "created_at": self._now()}
            self.votes.append(row)
            return [row]

        if sql == INSERT_AUDIT:
            if self.fail_audit:
                raise ConnectionResetError("connection reset by peer")
            self.writes += 1
            row = {
                "id": len(self.logs) + 1,
                "event_type": args[0],
                "message": args[1],
                "pod_id": args[2],
                "created_at": self._now(),
            }
            self.logs.append(row)
            return [row]

        if sql == SELECT_TALLY:
            if self.fail_tally:
                raise ConnectionRefusedError("connection refused")
            counts = Counter(v["candidate"] for v in self.votes)
            return [{"candidate": c, "count": n} for c, n in counts.items()]

        if sql == SELECT_AUDIT_TAIL:
            if self.fail_tail:
                raise ConnectionRefusedError("connection refused")
            ordered = sorted(self.logs, key=lambda r: (r["created_at"], r["id"]), reverse=True)
            return ordered[:args[0]]

        raise AssertionError(f"Unexpected statement: {sql}")

    async def execute(self, sql: str, *args):
        if self.unreachable:
            raise ConnectionRefusedError("connection refused")
        if sql == SCHEMA_SQL:
            self.schema_created = True
            return "CREATE TABLE"
        raise AssertionError(f"Unexpected statement: {sql}")


class FakePool:
    """asyncpg.Pool look-alike handing out connections to a FakeStore."""

    def __init__(self, store: FakeStore, max_size: int, command_timeout=None):
        self.store = store
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.semaphore = asyncio.Semaphore(max_size)
        self.closed = False

    async def acquire(self, timeout=None):
        await asyncio.wait_for(self.semaphore.acquire(), timeout)
        if self.store.unreachable:
            self.semaphore.release()
            raise ConnectionRefusedError("connection refused")
        if self.store.reject_connections:
            self.semaphore.release()
            raise asyncpg.exceptions.TooManyConnectionsError("sorry, too many clients already")
        return self.store

    async def release(self, connection):
        self.semaphore.release()

    async def close(self):
        self.closed = True


def make_pool_factory(store: FakeStore):
    """Build a replacement for asyncpg.create_pool bound to a FakeStore."""
    created = []

    async def factory(dsn, min_size=0, max_size=10, command_timeout=None):
        pool = FakePool(store, max_size, command_timeout)
        created.append(pool)
        return pool

    factory.created = created
    return factory


@pytest.fixture
def store() -> FakeStore:
    """Empty in-memory store."""
    return FakeStore()


@pytest.fixture
async def pool(store: FakeStore) -> AsyncGenerator[ConnectionPool, None]:
    """Open connection pool of five connections over the fake store."""
    connection_pool = ConnectionPool(
        "postgresql://test@localhost/cloudvote",
        max_size=5,
        timeout=0.5,
        pool_factory=make_pool_factory(store),
    )
    await connection_pool.open()
    yield connection_pool
    await connection_pool.close()


@pytest.fixture
def executor(pool: ConnectionPool) -> QueryExecutor:
    return QueryExecutor(pool)


@pytest.fixture
def audit_log(executor: QueryExecutor) -> AuditLog:
    return AuditLog(executor)


@pytest.fixture
def audit_failures() -> List:
    """Events reported through the dispatcher's error hook."""
    return []


@pytest.fixture
async def dispatcher(audit_log: AuditLog, audit_failures: List) -> AsyncGenerator[AuditDispatcher, None]:
    """Running audit dispatcher that records failures into audit_failures."""
    audit_dispatcher = AuditDispatcher(
        audit_log,
        queue_size=100,
        on_error=lambda event, error: audit_failures.append((event, error)),
    )
    await audit_dispatcher.start()
    yield audit_dispatcher
    await audit_dispatcher.stop()


@pytest.fixture
def ledger(executor: QueryExecutor, dispatcher: AuditDispatcher) -> VoteLedger:
    return VoteLedger(executor, dispatcher)


@pytest.fixture
def view(executor: QueryExecutor, audit_log: AuditLog) -> AggregationView:
    return AggregationView(executor, audit_log, tail_limit=50)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an application bound to the fake store."""
    return Settings(
        HOSTNAME="pod-test",
        POSTGRES_POOL_MAX_SIZE=10,
        POSTGRES_POOL_TIMEOUT=1.0,
        AUDIT_TAIL_LIMIT=50,
    )


@pytest.fixture
async def app(store: FakeStore, test_settings: Settings):
    """Application with its lifespan running against the fake store."""
    application = create_app(test_settings, pool_factory=make_pool_factory(store))
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def api_client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client calling the application in process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def wait_for_audit(app):
    """Returns a coroutine function that waits until queued audit events are stored."""
    async def _wait():
        await app.state.services.dispatcher.join()

    return _wait
