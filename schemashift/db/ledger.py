"""PostgreSQL implementations of the migration collaborators.

Provides:
- PostgresLedger: the ``schema_migrations`` table
- AdvisoryLock: session-level ``pg_advisory_lock``
- TransactionExecutor: runs a migration's statements in one transaction
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Optional

import asyncpg

from .config import MigrationConfig
from .connection import Connection
from .migrations.base import AppliedRecord, LockUnavailableError

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id SERIAL PRIMARY KEY,
    version VARCHAR(255) UNIQUE NOT NULL,
    name VARCHAR(255) NOT NULL,
    applied_at TIMESTAMP DEFAULT NOW(),
    execution_time_ms INTEGER,
    checksum VARCHAR(64),
    applied_by VARCHAR(100) DEFAULT CURRENT_USER
);
CREATE INDEX IF NOT EXISTS idx_{table}_version ON {table}(version);
CREATE INDEX IF NOT EXISTS idx_{table}_applied_at ON {table}(applied_at);
COMMENT ON TABLE {table} IS 'Tracks database schema migration history';
COMMENT ON COLUMN {table}.version IS 'Migration timestamp in YYYYMMDD_HHMMSS format';
COMMENT ON COLUMN {table}.checksum IS 'SHA-256 hash of migration content';
"""

LOCK_POLL_INTERVAL = 0.5


class StatementExecutionError(Exception):
    """A statement failed inside a migration transaction."""

    def __init__(self, statement_index: int, statement: str, cause: Exception):
        super().__init__(f"Statement {statement_index} failed: {cause}")
        self.statement_index = statement_index
        self.statement = statement
        self.cause = cause


class PostgresLedger:
    """Applied-migrations ledger stored in PostgreSQL."""

    def __init__(self, conn: Connection, table: Optional[str] = None):
        """Initialize the ledger.

        Args:
            conn: Database connection
            table: Ledger table name (defaults to the configured table)
        """
        self.conn = conn
        self.table = table or conn.config.migrations_table

    async def ensure_table(self) -> None:
        """Create the ledger table if it does not exist."""
        await self.conn.execute(MIGRATIONS_TABLE_SQL.format(table=self.table))
        logger.debug(f"Migrations table verified: {self.table}")

    async def get_applied(self) -> list[AppliedRecord]:
        """Get applied migrations in version order."""
        rows = await self.conn.fetch(
            f"SELECT version, name, applied_at, execution_time_ms, checksum "
            f"FROM {self.table} ORDER BY version ASC"
        )
        return [
            AppliedRecord(
                version=row["version"],
                name=row["name"],
                applied_at=row["applied_at"],
                execution_time_ms=row["execution_time_ms"],
                checksum=row["checksum"],
            )
            for row in rows
        ]

    async def record(
        self,
        version: str,
        name: str,
        execution_time_ms: int,
        checksum: str,
    ) -> None:
        """Record a migration as applied."""
        await self.conn.execute(
            f"INSERT INTO {self.table} (version, name, execution_time_ms, checksum) "
            f"VALUES ($1, $2, $3, $4)",
            version,
            name,
            execution_time_ms,
            checksum,
        )
        logger.info(f"Migration recorded: {version} - {name}")

    async def remove(self, version: str) -> None:
        """Remove a migration record after rollback."""
        status = await self.conn.execute(f"DELETE FROM {self.table} WHERE version = $1", version)
        if status.endswith(" 0"):
            logger.warning(f"Migration record not found: {version}")
        else:
            logger.info(f"Migration record removed: {version}")


class AdvisoryLock:
    """Session-level PostgreSQL advisory lock.

    Polls ``pg_try_advisory_lock`` until the lock is free or the timeout
    expires.
    """

    def __init__(
        self,
        conn: Connection,
        key: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the lock.

        Args:
            conn: Connection that will hold the lock
            key: Lock key (defaults to the configured lock id hash)
            timeout: Seconds to wait (defaults to the configured timeout)
        """
        self.conn = conn
        self.key = conn.config.lock_key if key is None else key
        self.timeout = conn.config.lock_timeout if timeout is None else timeout
        self.acquired = False

    async def acquire(self) -> None:
        """Acquire the lock.

        Raises:
            LockUnavailableError: If another session holds it past the timeout
        """
        deadline = time.monotonic() + self.timeout
        waiting_logged = False

        while True:
            if await self.conn.fetchval("SELECT pg_try_advisory_lock($1)", self.key):
                self.acquired = True
                logger.info(f"Migration lock acquired ({self.key})")
                return

            if time.monotonic() >= deadline:
                raise LockUnavailableError(
                    f"Could not acquire migration lock after {self.timeout}s. "
                    "Another migration may be running."
                )
            if not waiting_logged:
                logger.info("Waiting for migration lock held by another session...")
                waiting_logged = True
            await asyncio.sleep(LOCK_POLL_INTERVAL)

    async def release(self) -> None:
        """Release the lock if held."""
        if not self.acquired:
            return
        await self.conn.fetchval("SELECT pg_advisory_unlock($1)", self.key)
        self.acquired = False
        logger.info(f"Migration lock released ({self.key})")


class TransactionExecutor:
    """Runs statements in order inside a single transaction.

    ``BEGIN;`` ... ``COMMIT;`` blocks coming from the file are sent as
    literal statements; PostgreSQL decides how they nest.
    """

    def __init__(self, conn: Connection):
        self.conn = conn

    async def run_in_transaction(self, statements: Sequence[str]) -> None:
        """Execute statements, stopping at the first failure.

        Raises:
            StatementExecutionError: With the index of the failing statement
        """
        async with self.conn.transaction() as raw:
            for index, statement in enumerate(statements):
                try:
                    await raw.execute(statement)
                except asyncpg.PostgresError as e:
                    logger.error(f"Failed statement {index}: {statement[:200]}...")
                    raise StatementExecutionError(index, statement, e) from e


def create_collaborators(
    conn: Connection,
    config: Optional[MigrationConfig] = None,
) -> tuple[PostgresLedger, AdvisoryLock, TransactionExecutor]:
    """Build the ledger, lock and executor sharing one connection."""
    cfg = config or conn.config
    return (
        PostgresLedger(conn, cfg.migrations_table),
        AdvisoryLock(conn, cfg.lock_key, cfg.lock_timeout),
        TransactionExecutor(conn),
    )
