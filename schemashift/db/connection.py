"""PostgreSQL connection management.

Provides a single dedicated asyncpg connection per invocation. Advisory
locks are session-scoped, so the lock, ledger and executor share it.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import asyncpg

from .config import MigrationConfig, get_config

logger = logging.getLogger(__name__)


class ConnectionError(Exception):
    """Database connection error."""

    pass


class QueryError(Exception):
    """Database query error."""

    pass


@dataclass
class ConnectionStats:
    """Connection statistics."""

    total_queries: int = 0
    failed_queries: int = 0
    last_connected: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class DatabaseInfo:
    """Server details shown by ``status`` and ``test``."""

    database: str
    user: str
    version: str
    timestamp: Optional[datetime] = None

    @property
    def short_version(self) -> str:
        """First two words of the server version string."""
        return " ".join(self.version.split(" ")[:2])


class Connection:
    """A single PostgreSQL connection wrapper.

    Handles connection lifecycle, timeouts and error wrapping.
    """

    def __init__(self, config: MigrationConfig):
        """Initialize connection.

        Args:
            config: Migration configuration
        """
        self.config = config
        self._conn: Optional[asyncpg.Connection] = None
        self._lock = asyncio.Lock()
        self.stats = ConnectionStats()

    @property
    def is_connected(self) -> bool:
        """Check if connection is active."""
        return self._conn is not None and not self._conn.is_closed()

    async def connect(self) -> None:
        """Establish connection to PostgreSQL."""
        async with self._lock:
            if self.is_connected:
                return

            try:
                self._conn = await asyncpg.connect(
                    self.config.dsn,
                    timeout=self.config.connect_timeout,
                    command_timeout=self.config.query_timeout,
                    ssl="require" if self.config.ssl else None,
                    server_settings={"application_name": self.config.application_name},
                )
                self.stats.last_connected = datetime.now()
                logger.debug(f"Connected to PostgreSQL as {self.config.application_name}")

            except asyncio.TimeoutError as e:
                self.stats.last_error = str(e)
                raise ConnectionError(
                    f"Connection timeout after {self.config.connect_timeout}s"
                ) from e
            except (OSError, asyncpg.PostgresError) as e:
                self.stats.last_error = str(e)
                raise ConnectionError(f"Failed to connect: {e}") from e

    async def disconnect(self) -> None:
        """Close connection."""
        async with self._lock:
            if self._conn:
                try:
                    await self._conn.close()
                except (OSError, asyncpg.PostgresError) as e:
                    logger.warning(f"Error closing connection: {e}")
                finally:
                    self._conn = None

    async def _client(self) -> asyncpg.Connection:
        if not self.is_connected:
            await self.connect()
        assert self._conn is not None
        return self._conn

    async def execute(self, sql: str, *args: Any) -> str:
        """Execute a statement and return its status tag.

        Args:
            sql: SQL statement
            *args: Positional query parameters

        Returns:
            Status string (e.g. ``DELETE 1``)
        """
        conn = await self._client()
        self.stats.total_queries += 1
        try:
            return await conn.execute(sql, *args)
        except asyncpg.PostgresError as e:
            self.stats.failed_queries += 1
            self.stats.last_error = str(e)
            raise QueryError(f"Query failed: {e}") from e

    async def fetch(self, sql: str, *args: Any) -> list[asyncpg.Record]:
        """Fetch all rows of a query."""
        conn = await self._client()
        self.stats.total_queries += 1
        try:
            return await conn.fetch(sql, *args)
        except asyncpg.PostgresError as e:
            self.stats.failed_queries += 1
            self.stats.last_error = str(e)
            raise QueryError(f"Query failed: {e}") from e

    async def fetchval(self, sql: str, *args: Any) -> Any:
        """Fetch a single value."""
        conn = await self._client()
        self.stats.total_queries += 1
        try:
            return await conn.fetchval(sql, *args)
        except asyncpg.PostgresError as e:
            self.stats.failed_queries += 1
            self.stats.last_error = str(e)
            raise QueryError(f"Query failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Run the block inside a transaction on the raw connection.

        Usage:
            async with conn.transaction() as raw:
                await raw.execute("CREATE TABLE t (id int)")
        """
        conn = await self._client()
        async with conn.transaction():
            yield conn

    async def database_info(self) -> DatabaseInfo:
        """Get database name, user, server version and time."""
        rows = await self.fetch(
            "SELECT current_database() AS database, current_user AS user, "
            "version() AS version, current_timestamp AS timestamp"
        )
        row = rows[0]
        return DatabaseInfo(
            database=row["database"],
            user=row["user"],
            version=row["version"],
            timestamp=row["timestamp"],
        )


@asynccontextmanager
async def get_connection(
    config: Optional[MigrationConfig] = None,
) -> AsyncGenerator[Connection, None]:
    """Context manager for a dedicated database connection.

    Usage:
        async with get_connection() as conn:
            await conn.execute("SELECT 1")

    Args:
        config: Optional configuration override

    Yields:
        Connected Connection
    """
    conn = Connection(config or get_config())
    await conn.connect()
    try:
        yield conn
    finally:
        await conn.disconnect()
