"""PostgreSQL integration for schemashift.

Provides:
- Environment-based configuration
- A dedicated connection per invocation
- The ledger, advisory lock and transactional executor used by migrations

Usage:
    from schemashift.db import get_connection, create_collaborators
    from schemashift.db.migrations import MigrationCatalog, MigrationRunner

    async with get_connection() as conn:
        ledger, lock, executor = create_collaborators(conn)
        await ledger.ensure_table()
        runner = MigrationRunner(MigrationCatalog(path), ledger, lock, executor)
        await runner.apply()

Environment Variables:
    DATABASE_URL: Full connection URL (wins over DB_* variables)
    DB_HOST, DB_PORT, DB_DATABASE, DB_USER, DB_PASSWORD: Connection settings
    DB_SSL: Require SSL (true/false)
    MIGRATIONS_DIR: Directory holding migration files
    MIGRATION_LOCK_ID: Name of the global migration lock
    MIGRATION_LOCK_TIMEOUT: Seconds to wait for the lock
"""

from .config import (
    ConfigError,
    MigrationConfig,
    get_config,
    set_config,
    string_hash,
)

from .connection import (
    Connection,
    ConnectionError,
    ConnectionStats,
    DatabaseInfo,
    QueryError,
    get_connection,
)

from .ledger import (
    AdvisoryLock,
    PostgresLedger,
    StatementExecutionError,
    TransactionExecutor,
    create_collaborators,
)

__all__ = [
    # Config
    "ConfigError",
    "MigrationConfig",
    "get_config",
    "set_config",
    "string_hash",
    # Connection
    "Connection",
    "ConnectionError",
    "ConnectionStats",
    "DatabaseInfo",
    "QueryError",
    "get_connection",
    # Collaborators
    "AdvisoryLock",
    "PostgresLedger",
    "StatementExecutionError",
    "TransactionExecutor",
    "create_collaborators",
]
