"""Migration runner for applying and rolling back SQL migrations.

Provides:
- Apply pending migrations
- Rollback the last migration or back to a version
- Migration status reporting
- Validation of migration files
- Dry-run support

The ledger, lock and executor are injected; the runner never opens
connections itself.
"""

import logging
import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .base import (
    AppliedRecord,
    Direction,
    EmptyUpMigrationError,
    LockUnavailableError,
    MigrationError,
    MigrationExecutionError,
    MigrationFile,
    MigrationLedger,
    MigrationLock,
    MigrationWarning,
    MissingDownMigrationError,
    SourceFileMissingError,
    StatementExecutor,
)
from .catalog import MigrationCatalog
from .parser import parse_migration
from .reconcile import (
    find_checksum_drift,
    find_orphaned_records,
    last_applied,
    pending_migrations,
    rollback_targets,
)
from .splitter import split_statements

logger = logging.getLogger(__name__)

TRANSACTION_BEGIN = re.compile(r"\bBEGIN\b", re.IGNORECASE)
TRANSACTION_COMMIT = re.compile(r"\bCOMMIT\b", re.IGNORECASE)


@dataclass
class MigrationRecord:
    """Record of a migration executed in this run."""

    version: str
    name: str
    filename: str
    direction: Direction
    execution_time_ms: int
    checksum: str
    statement_count: int


@dataclass
class MigrationResult:
    """Result of an apply or rollback operation."""

    operation: str
    applied: list[MigrationRecord] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    dry_run: bool = False
    warnings: list[MigrationWarning] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        """True when there was nothing to do."""
        return not self.planned


@dataclass
class FileValidation:
    """Validation outcome for one migration file."""

    filename: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class ValidationReport:
    """Validation outcome for the whole catalog."""

    files: list[FileValidation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return all(f.is_valid for f in self.files)

    @property
    def error_count(self) -> int:
        return sum(len(f.errors) for f in self.files)

    @property
    def warning_count(self) -> int:
        return sum(len(f.warnings) for f in self.files)


@dataclass
class MigrationStatusReport:
    """Applied versus available migrations."""

    applied: list[AppliedRecord]
    pending: list[MigrationFile]
    drifted: list[tuple[AppliedRecord, MigrationFile]] = field(default_factory=list)
    orphaned: list[AppliedRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.applied) + len(self.pending)


def _has_transaction_block(sql: str) -> bool:
    return bool(TRANSACTION_BEGIN.search(sql) and TRANSACTION_COMMIT.search(sql))


class MigrationRunner:
    """Runner for executing SQL migration files."""

    def __init__(
        self,
        catalog: MigrationCatalog,
        ledger: MigrationLedger,
        lock: MigrationLock,
        executor: StatementExecutor,
        verbose: bool = False,
    ):
        """Initialize the runner.

        Args:
            catalog: Source of migration files
            ledger: Applied-migrations ledger
            lock: Global migration lock
            executor: Transactional statement executor
            verbose: Log every statement before it runs
        """
        self.catalog = catalog
        self.ledger = ledger
        self.lock = lock
        self.executor = executor
        self.verbose = verbose

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        """Hold the global lock for the duration of the block."""
        try:
            await self.lock.acquire()
        except LockUnavailableError:
            raise
        except Exception as e:
            raise LockUnavailableError(f"Could not acquire migration lock: {e}") from e

        try:
            yield
        finally:
            try:
                await self.lock.release()
            except Exception as e:
                logger.error(f"Failed to release migration lock: {e}")

    async def get_pending_migrations(self) -> list[MigrationFile]:
        """Get migration files that have not been applied.

        Returns:
            Pending migration files in filename order
        """
        applied = await self.ledger.get_applied()
        return pending_migrations(self.catalog.discover(), {r.version for r in applied})

    async def get_status(self) -> MigrationStatusReport:
        """Get applied, pending, drifted and orphaned migrations."""
        catalog = self.catalog.discover()
        applied = await self.ledger.get_applied()

        report = MigrationStatusReport(
            applied=applied,
            pending=pending_migrations(catalog, {r.version for r in applied}),
            drifted=find_checksum_drift(catalog, applied),
            orphaned=find_orphaned_records(catalog, applied),
        )

        for record, migration in report.drifted:
            logger.warning(
                f"Checksum drift: {migration.filename} changed since it was applied "
                f"(recorded {record.checksum[:12]}, now {migration.checksum[:12]})"
            )
        return report

    async def apply(self, dry_run: bool = False) -> MigrationResult:
        """Apply all pending migrations in order.

        Stops at the first failure; migrations already applied in this run
        stay applied.

        Args:
            dry_run: If True, report pending migrations without executing

        Returns:
            Migration result with applied records

        Raises:
            EmptyUpMigrationError: If a pending file has no up SQL
            MigrationExecutionError: If a statement fails
            LockUnavailableError: If the lock cannot be acquired
        """
        result = MigrationResult(operation="up", dry_run=dry_run)

        async with self._locked():
            pending = await self.get_pending_migrations()
            result.planned = [m.filename for m in pending]

            if not pending:
                logger.info("No pending migrations")
                return result

            logger.info(f"Found {len(pending)} pending migration(s)")
            for migration in pending:
                logger.info(f"  - {migration.filename}")

            if dry_run:
                logger.info("[DRY-RUN] Would apply these migrations")
                return result

            for migration in pending:
                record = await self._run(migration, Direction.UP, result.warnings)
                result.applied.append(record)

        logger.info(f"Applied {len(result.applied)} migration(s)")
        return result

    async def rollback(self, dry_run: bool = False) -> MigrationResult:
        """Rollback the most recently applied migration.

        Args:
            dry_run: If True, report the migration without executing

        Returns:
            Migration result with the rolled back record
        """
        result = MigrationResult(operation="down", dry_run=dry_run)

        async with self._locked():
            record = last_applied(await self.ledger.get_applied())
            if record is None:
                logger.info("No migrations to rollback")
                return result

            await self._rollback_records([record], result)

        return result

    async def rollback_to(self, target_version: str, dry_run: bool = False) -> MigrationResult:
        """Rollback every migration applied after ``target_version``.

        The target itself stays applied. Migrations are undone most recent
        first.

        Args:
            target_version: Version to roll back to
            dry_run: If True, report the rollback set without executing

        Returns:
            Migration result with rolled back records

        Raises:
            VersionNotFoundError: If the target is not applied
            SourceFileMissingError: If an applied version has no file
        """
        result = MigrationResult(operation="rollback", dry_run=dry_run)

        async with self._locked():
            records = rollback_targets(await self.ledger.get_applied(), target_version)
            if not records:
                logger.info(f"Already at target version {target_version}")
                return result

            await self._rollback_records(records, result)

        return result

    async def _rollback_records(
        self,
        records: list[AppliedRecord],
        result: MigrationResult,
    ) -> None:
        # Resolve every source file before the first mutation
        catalog = {m.version: m for m in self.catalog.discover()}
        migrations = []
        for record in records:
            migration = catalog.get(record.version)
            if migration is None:
                raise SourceFileMissingError(
                    f"Migration file not found for applied version {record.version}",
                    version=record.version,
                )
            migrations.append(migration)

        result.planned = [m.filename for m in migrations]
        prefix = "[DRY-RUN] Would rollback" if result.dry_run else "Rolling back"
        logger.info(f"{prefix} {len(migrations)} migration(s):")
        for migration in migrations:
            logger.info(f"  - {migration.version} - {migration.name}")

        if result.dry_run:
            return

        for migration in migrations:
            record = await self._run(migration, Direction.DOWN, result.warnings)
            result.applied.append(record)

        logger.info(f"Rolled back {len(result.applied)} migration(s)")

    async def _run(
        self,
        migration: MigrationFile,
        direction: Direction,
        warnings: list[MigrationWarning],
    ) -> MigrationRecord:
        """Execute one migration file and update the ledger."""
        version = migration.version
        assert version is not None
        parsed = parse_migration(migration)

        if direction == Direction.UP:
            if parsed.is_legacy_format:
                warning = MigrationWarning(
                    migration.filename,
                    "legacy migration format; applying full file as UP migration",
                )
                logger.warning(str(warning))
                warnings.append(warning)
            sql = parsed.up_sql
            if not sql:
                raise EmptyUpMigrationError(
                    "No UP migration found", version=version, filename=migration.filename
                )
        else:
            sql = parsed.down_sql
            if not sql:
                if parsed.is_legacy_format:
                    reason = "Legacy migration has no DOWN migration"
                else:
                    reason = "No DOWN migration found"
                raise MissingDownMigrationError(
                    reason, version=version, filename=migration.filename
                )

        statements = split_statements(sql)
        logger.info(f"Applying {direction.value.upper()}: {migration.filename}")

        if self.verbose:
            for stmt in statements:
                logger.debug(f"  Executing: {stmt[:100]}...")

        start_time = time.perf_counter()
        try:
            await self.executor.run_in_transaction(statements)
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationExecutionError(
                f"Migration {direction.value.upper()} failed: {e}",
                version=version,
                filename=migration.filename,
                statement_index=getattr(e, "statement_index", None),
            ) from e
        execution_time_ms = int((time.perf_counter() - start_time) * 1000)

        if direction == Direction.UP:
            await self.ledger.record(version, migration.name, execution_time_ms, parsed.checksum)
        else:
            await self.ledger.remove(version)

        logger.info(f"{direction.value.upper()} completed in {execution_time_ms}ms")

        return MigrationRecord(
            version=version,
            name=migration.name,
            filename=migration.filename,
            direction=direction,
            execution_time_ms=execution_time_ms,
            checksum=parsed.checksum,
            statement_count=len(statements),
        )

    def validate(self) -> ValidationReport:
        """Validate every migration file without touching the database."""
        return validate_migrations(self.catalog)


def validate_migrations(catalog: MigrationCatalog) -> ValidationReport:
    """Validate every migration file in a catalog.

    Checks that the up block is non-empty and that marked files have a
    down block. Missing transaction blocks and the legacy format are
    reported as warnings. Never acquires the lock or reads the ledger.

    Args:
        catalog: Migration files to check

    Returns:
        Validation report
    """
    report = ValidationReport()

    for migration in catalog.discover():
        parsed = parse_migration(migration)
        check = FileValidation(filename=migration.filename)

        if not parsed.up_sql:
            check.errors.append("No UP migration found")

        if parsed.is_legacy_format:
            check.warnings.append("Legacy migration format (no DOWN migration)")
        elif not parsed.down_sql:
            check.errors.append("No DOWN migration found")

        if parsed.up_sql and not _has_transaction_block(parsed.up_sql):
            check.warnings.append("UP migration missing transaction block")
        if parsed.down_sql and not _has_transaction_block(parsed.down_sql):
            check.warnings.append("DOWN migration missing transaction block")

        for error in check.errors:
            logger.error(f"{migration.filename}: {error}")
        for warning in check.warnings:
            logger.warning(f"{migration.filename}: {warning}")

        report.files.append(check)

    return report
