"""Base types for the migration system.

Defines the core abstractions:
- MigrationFile: A migration file discovered on disk
- ParsedMigration: Marked (up + down) or legacy (up only) SQL blocks
- AppliedRecord: A row of the applied-migrations ledger
- MigrationLedger / MigrationLock / StatementExecutor: Collaborator protocols
- MigrationError and its subclasses: Fatal conditions
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .versioning import compute_checksum, extract_name, extract_version

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Base exception for migration errors.

    Carries enough context (version, filename, statement index) to
    diagnose a failure without re-running in verbose mode.
    """

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        filename: Optional[str] = None,
        statement_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.version = version
        self.filename = filename
        self.statement_index = statement_index

    def __str__(self) -> str:
        context = []
        if self.version:
            context.append(f"version={self.version}")
        if self.filename:
            context.append(f"file={self.filename}")
        if self.statement_index is not None:
            context.append(f"statement={self.statement_index}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class EmptyUpMigrationError(MigrationError):
    """The up block of a migration file is blank."""

    pass


class MissingDownMigrationError(MigrationError):
    """A migration needed for rollback has no down block."""

    pass


class VersionNotFoundError(MigrationError):
    """Rollback target is not among the applied migrations."""

    pass


class SourceFileMissingError(MigrationError):
    """An applied version has no corresponding file on disk."""

    pass


class DuplicateVersionError(MigrationError):
    """Two migration files resolve to the same version."""

    pass


class MigrationExecutionError(MigrationError):
    """The executor rejected a statement of a migration."""

    pass


class LockUnavailableError(MigrationError):
    """The global migration lock could not be acquired."""

    pass


class Direction(str, Enum):
    """Direction a migration is run in."""

    UP = "up"
    DOWN = "down"


@dataclass
class MigrationWarning:
    """Non-fatal condition surfaced to the operator."""

    filename: str
    message: str

    def __str__(self) -> str:
        return f"{self.filename}: {self.message}"


@dataclass(frozen=True)
class MigrationFile:
    """A migration file read from disk.

    Version, name and checksum are derived from the filename and raw bytes;
    they are never stored separately.
    """

    path: Path
    raw_content: bytes = field(repr=False)

    @classmethod
    def from_path(cls, path: Path) -> "MigrationFile":
        """Read a migration file.

        Args:
            path: Path to the .sql file

        Returns:
            MigrationFile holding the exact file bytes
        """
        return cls(path=path, raw_content=path.read_bytes())

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def version(self) -> Optional[str]:
        return extract_version(self.filename)

    @property
    def name(self) -> str:
        return extract_name(self.filename)

    @property
    def content(self) -> str:
        """File content decoded as UTF-8.

        Undecodable bytes become U+FFFD; the checksum still covers the raw bytes.
        """
        return self.raw_content.decode("utf-8", errors="replace")

    @property
    def checksum(self) -> str:
        return compute_checksum(self.raw_content)

    def __repr__(self) -> str:
        return f"<MigrationFile {self.filename}>"


@dataclass(frozen=True)
class ParsedMigration:
    """SQL blocks extracted from a migration file.

    Use MarkedMigration or LegacyMigration; callers read ``up_sql``,
    ``down_sql`` and ``is_legacy_format`` without re-inspecting the file.
    """

    up_sql: str
    checksum: str

    @property
    def down_sql(self) -> str:
        return ""

    @property
    def is_legacy_format(self) -> bool:
        return False

    def sql_for(self, direction: Direction) -> str:
        """Get the SQL block for a direction."""
        if direction == Direction.UP:
            return self.up_sql
        return self.down_sql


@dataclass(frozen=True)
class MarkedMigration(ParsedMigration):
    """File with explicit ``-- Up Migration`` / ``-- Down Migration`` markers."""

    down: str = ""

    @property
    def down_sql(self) -> str:
        return self.down


@dataclass(frozen=True)
class LegacyMigration(ParsedMigration):
    """File without markers: the whole file is the up block, there is no down."""

    @property
    def is_legacy_format(self) -> bool:
        return True


@dataclass(frozen=True)
class AppliedRecord:
    """Row of the applied-migrations ledger (read-only here)."""

    version: str
    name: str
    applied_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    checksum: Optional[str] = None


class MigrationLedger(Protocol):
    """Durable record of applied migrations."""

    async def get_applied(self) -> list[AppliedRecord]:
        """Applied records in application (version) order."""
        ...

    async def record(
        self, version: str, name: str, execution_time_ms: int, checksum: str
    ) -> None: ...

    async def remove(self, version: str) -> None: ...


class MigrationLock(Protocol):
    """Advisory lock with a single holder."""

    async def acquire(self) -> None: ...

    async def release(self) -> None: ...


class StatementExecutor(Protocol):
    """Runs a list of statements inside one transaction.

    Raises on the first failing statement.
    """

    async def run_in_transaction(self, statements: Sequence[str]) -> None: ...
