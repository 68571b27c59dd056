"""PostgreSQL connection pool and query executor."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, List, Optional

import asyncpg

from ..shared.errors import ConnectivityError, QueryError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS votes (
    id BIGSERIAL PRIMARY KEY,
    candidate VARCHAR(32) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS system_logs (
    id BIGSERIAL PRIMARY KEY,
    event_type VARCHAR(32) NOT NULL,
    message TEXT NOT NULL,
    pod_id VARCHAR(255) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_system_logs_created_at
    ON system_logs (created_at DESC, id DESC);
"""

# Errors that mean the store could not be reached, as opposed to a bad statement
CONNECTIVITY_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
)


class ConnectionPool:
    """
    Bounded async connection pool.

    Wraps an asyncpg pool with an acquisition timeout and an optional limit
    on the number of callers allowed to wait for a connection. The pool is
    the only shared mutable resource inside one process; counters are only
    touched between suspension points.
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 0,
        max_size: int = 10,
        timeout: float = 10.0,
        queue_limit: int = 0,
        pool_factory: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.queue_limit = queue_limit
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pool = None
        self._in_use = 0
        self._waiting = 0

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return self._waiting

    async def open(self):
        """Create the underlying pool. Connections are established lazily when min_size is 0."""
        if self._pool is not None:
            return
        try:
            self._pool = await self._pool_factory(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.timeout,
            )
            logger.info(
                f"PostgreSQL connection pool created "
                f"(min={self.min_size}, max={self.max_size}, timeout={self.timeout}s)"
            )
        except (CONNECTIVITY_ERRORS + (asyncpg.exceptions.PostgresError,)) as e:
            logger.error(f"Failed to create PostgreSQL connection pool: {e}")
            raise ConnectivityError(f"Connection pool creation failed: {e}") from e

    async def acquire(self):
        """
        Acquire a connection.

        Callers beyond max_size queue until a connection is released or the
        timeout expires.

        Returns:
            An open store connection

        Raises:
            ConnectivityError: Pool closed, waiter queue full, timeout, or
                the connection could not be established
        """
        if self._pool is None:
            raise ConnectivityError("Connection pool is not open")

        queued = self._in_use >= self.max_size
        if queued:
            if self.queue_limit and self._waiting >= self.queue_limit:
                logger.warning(
                    f"Connection queue limit reached ({self.queue_limit} waiting)"
                )
                raise ConnectivityError("Connection queue limit reached")
            self._waiting += 1

        try:
            connection = await self._pool.acquire(timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out after {self.timeout}s waiting for a connection")
            raise ConnectivityError("Timed out acquiring a connection") from e
        except CONNECTIVITY_ERRORS as e:
            logger.error(f"Failed to establish PostgreSQL connection: {e}")
            raise ConnectivityError(f"Connection failed: {e}") from e
        except asyncpg.exceptions.PostgresError as e:
            # Server refused the session: too many clients, bad credentials, missing database
            logger.error(f"PostgreSQL rejected the connection: {e}")
            raise ConnectivityError(f"Connection rejected: {e}") from e
        finally:
            if queued:
                self._waiting -= 1

        self._in_use += 1
        return connection

    async def release(self, connection):
        """Return a connection to the pool."""
        self._in_use -= 1
        if self._pool is not None:
            await self._pool.release(connection)

    @asynccontextmanager
    async def connection(self):
        """Context manager for pooled connections."""
        conn = await self.acquire()
        try:
            yield conn
        finally:
            await self.release(conn)

    async def close(self):
        """Close database connection pool."""
        try:
            if self._pool is not None:
                await self._pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")
        finally:
            self._pool = None


class QueryExecutor:
    """Runs one statement per call against a pooled connection."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def execute(self, statement: str, *parameters) -> List[Any]:
        """
        Run a statement and return its rows.

        Parameters are always bound positionally ($1, $2, ...) and never
        interpolated into the statement text. The connection is released
        whether the statement succeeded or failed. No retries.

        Args:
            statement: SQL text with positional placeholders
            *parameters: Values bound to the placeholders

        Returns:
            List of rows (empty for statements without a result set)

        Raises:
            ConnectivityError: Store unreachable or the round trip timed out
            QueryError: The store rejected the statement
        """
        async with self.pool.connection() as conn:
            try:
                return await conn.fetch(statement, *parameters)
            except CONNECTIVITY_ERRORS as e:
                raise ConnectivityError(f"Store unreachable: {e}") from e
            except asyncpg.exceptions.PostgresError as e:
                raise QueryError(f"Query failed: {e}") from e

    async def ensure_schema(self):
        """Create the votes and system_logs tables if they do not exist."""
        async with self.pool.connection() as conn:
            try:
                await conn.execute(SCHEMA_SQL)
            except CONNECTIVITY_ERRORS as e:
                raise ConnectivityError(f"Store unreachable: {e}") from e
            except asyncpg.exceptions.PostgresError as e:
                raise QueryError(f"Schema creation failed: {e}") from e
        logger.info("Database schema verified")

