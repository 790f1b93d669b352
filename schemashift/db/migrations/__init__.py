"""SQL migration system.

Provides a file-based migration framework with:
- Timestamped ``YYYYMMDD[_HHMMSS]_<name>.sql`` files, ordered by filename
- ``-- Up Migration`` / ``-- Down Migration`` blocks (markerless files are
  legacy, up-only)
- Statement splitting that keeps ``BEGIN;`` ... ``COMMIT;`` blocks whole
- Apply, rollback and rollback-to-version under a global lock
- Dry-run and validation modes

Usage:
    from schemashift.db.migrations import MigrationCatalog, MigrationRunner

    runner = MigrationRunner(catalog, ledger, lock, executor)
    result = await runner.apply()
    result = await runner.rollback_to("20251016_120000")

CLI Usage:
    python -m schemashift.db.migrations up
    python -m schemashift.db.migrations rollback 20251016_120000
    python -m schemashift.db.migrations validate
"""

from .base import (
    AppliedRecord,
    Direction,
    DuplicateVersionError,
    EmptyUpMigrationError,
    LegacyMigration,
    LockUnavailableError,
    MarkedMigration,
    MigrationError,
    MigrationExecutionError,
    MigrationFile,
    MigrationLedger,
    MigrationLock,
    MigrationWarning,
    MissingDownMigrationError,
    ParsedMigration,
    SourceFileMissingError,
    StatementExecutor,
    VersionNotFoundError,
)

from .versioning import (
    compute_checksum,
    extract_name,
    extract_version,
    generate_timestamp,
)

from .parser import (
    extract_sql,
    has_markers,
    parse_migration,
    strip_meta_commands,
)

from .splitter import SplitState, split_statements

from .catalog import MigrationCatalog

from .reconcile import (
    find_checksum_drift,
    find_orphaned_records,
    last_applied,
    pending_migrations,
    rollback_targets,
)

from .runner import (
    FileValidation,
    MigrationRecord,
    MigrationResult,
    MigrationRunner,
    MigrationStatusReport,
    ValidationReport,
    validate_migrations,
)

__all__ = [
    # Base types
    "AppliedRecord",
    "Direction",
    "LegacyMigration",
    "MarkedMigration",
    "MigrationFile",
    "MigrationWarning",
    "ParsedMigration",
    # Collaborator protocols
    "MigrationLedger",
    "MigrationLock",
    "StatementExecutor",
    # Errors
    "DuplicateVersionError",
    "EmptyUpMigrationError",
    "LockUnavailableError",
    "MigrationError",
    "MigrationExecutionError",
    "MissingDownMigrationError",
    "SourceFileMissingError",
    "VersionNotFoundError",
    # Versions and checksums
    "compute_checksum",
    "extract_name",
    "extract_version",
    "generate_timestamp",
    # Parsing
    "extract_sql",
    "has_markers",
    "parse_migration",
    "strip_meta_commands",
    "SplitState",
    "split_statements",
    # Catalog and reconciliation
    "MigrationCatalog",
    "find_checksum_drift",
    "find_orphaned_records",
    "last_applied",
    "pending_migrations",
    "rollback_targets",
    # Runner
    "FileValidation",
    "MigrationRecord",
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatusReport",
    "ValidationReport",
    "validate_migrations",
]
