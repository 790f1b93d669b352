"""PostgreSQL and migration configuration.

Environment-based configuration for the migration runner.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import quote


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def string_hash(value: str) -> int:
    """Stable 32-bit hash of a string, used as the advisory lock key.

    Rolling ``h * 31 + ord(c)`` truncated to a signed 32-bit integer,
    returned as its absolute value.

    Examples:
        >>> string_hash("")
        0
        >>> string_hash("a")
        97
    """
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


@dataclass
class MigrationConfig:
    """Migration runner configuration.

    Attributes:
        database_url: Full connection URL; wins over the discrete fields
        host: Database host
        port: Database port
        database: Database name
        user: Authentication username
        password: Authentication password
        ssl: Whether to require SSL
        application_name: Reported to the server for monitoring
        connect_timeout: Connection timeout in seconds
        query_timeout: Per-statement timeout in seconds
        migrations_dir: Directory holding ``.sql`` migration files
        lock_id: Name of the global migration lock
        lock_timeout: Seconds to wait for the lock before giving up
        migrations_table: Ledger table name
    """

    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL") or None)
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("DB_PORT", "5432")))
    database: str = field(default_factory=lambda: os.getenv("DB_DATABASE", "postgres"))
    user: str = field(default_factory=lambda: os.getenv("DB_USER", "postgres"))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))
    ssl: bool = field(default_factory=lambda: _env_bool("DB_SSL"))
    application_name: str = field(
        default_factory=lambda: os.getenv("DB_APPLICATION_NAME", "migration_runner")
    )
    connect_timeout: float = field(
        default_factory=lambda: float(os.getenv("DB_CONNECTION_TIMEOUT", "10.0"))
    )
    query_timeout: float = field(
        default_factory=lambda: float(os.getenv("DB_QUERY_TIMEOUT", "300.0"))
    )
    migrations_dir: Path = field(
        default_factory=lambda: Path(os.getenv("MIGRATIONS_DIR", "database/migrations"))
    )
    lock_id: str = field(default_factory=lambda: os.getenv("MIGRATION_LOCK_ID", "migration_lock"))
    lock_timeout: float = field(
        default_factory=lambda: float(os.getenv("MIGRATION_LOCK_TIMEOUT", "30.0"))
    )
    migrations_table: str = field(
        default_factory=lambda: os.getenv("MIGRATIONS_TABLE", "schema_migrations")
    )

    @property
    def dsn(self) -> str:
        """Connection URL for asyncpg."""
        if self.database_url:
            # Heroku/Railway style URLs
            if self.database_url.startswith("postgres://"):
                return self.database_url.replace("postgres://", "postgresql://", 1)
            return self.database_url

        auth = quote(self.user, safe="")
        if self.password:
            auth += ":" + quote(self.password, safe="")
        return f"postgresql://{auth}@{self.host}:{self.port}/{self.database}"

    @property
    def lock_key(self) -> int:
        """Advisory lock key derived from ``lock_id``."""
        return string_hash(self.lock_id)

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.database_url:
            if not self.database_url.startswith(("postgres://", "postgresql://")):
                errors.append("DATABASE_URL must start with postgres:// or postgresql://")
        else:
            if not self.host:
                errors.append("DB_HOST is required")
            if not self.database:
                errors.append("DB_DATABASE is required")
            if not self.user:
                errors.append("DB_USER is required")
            if not 0 < self.port < 65536:
                errors.append("DB_PORT must be between 1 and 65535")

        if not self.lock_id:
            errors.append("MIGRATION_LOCK_ID is required")
        if self.lock_timeout <= 0:
            errors.append("MIGRATION_LOCK_TIMEOUT must be positive")
        if not self.migrations_table.replace("_", "").isalnum():
            errors.append("MIGRATIONS_TABLE must be a plain identifier")

        return errors


# Global configuration instance
class ConfigError(ValueError):
    """Environment variables could not be parsed into a configuration."""


_config: Optional[MigrationConfig] = None


def get_config() -> MigrationConfig:
    """Get the global migration configuration.

    Returns:
        MigrationConfig instance

    Raises:
        ConfigError: If a numeric environment variable is malformed
    """
    global _config
    if _config is None:
        try:
            _config = MigrationConfig()
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
    return _config


def set_config(config: Optional[MigrationConfig]) -> None:
    """Set the global migration configuration.

    Args:
        config: Configuration to use (None resets to environment defaults)
    """
    global _config
    _config = config
