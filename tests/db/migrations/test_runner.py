"""Tests for the migration runner.

The runner is wired to in-memory fakes for the ledger, lock and executor,
so these tests never need a database.
"""

import logging

import pytest

from schemashift.db.migrations.base import (
    AppliedRecord,
    Direction,
    EmptyUpMigrationError,
    LockUnavailableError,
    MigrationExecutionError,
    MissingDownMigrationError,
    SourceFileMissingError,
    VersionNotFoundError,
)
from schemashift.db.migrations.runner import MigrationRunner, validate_migrations
from schemashift.db.migrations.versioning import compute_checksum

from tests.helpers.mock_factories import (
    LEGACY_SQL,
    MARKED_SQL,
    FakeExecutor,
    FakeLedger,
    FakeLock,
    write_migration,
)


def _marked(table):
    return (
        f"-- Up Migration\nBEGIN;\nCREATE TABLE {table} (id int);\nCOMMIT;\n\n"
        f"-- Down Migration\nBEGIN;\nDROP TABLE {table};\nCOMMIT;\n"
    )


@pytest.fixture
def three_marked(migrations_dir):
    """Three marked migrations V1..V3."""
    for index, table in enumerate(["alpha", "beta", "gamma"], start=1):
        write_migration(migrations_dir, f"2024010{index}_create_{table}.sql", _marked(table))
    return migrations_dir


class TestApply:
    """Tests for MigrationRunner.apply."""

    @pytest.mark.asyncio
    async def test_pending_in_order(self, populated_dir, runner):
        """Test a fresh ledger has every file pending, oldest first."""
        pending = await runner.get_pending_migrations()
        assert [m.filename for m in pending] == ["20240101_a.sql", "20240102_b.sql"]

    @pytest.mark.asyncio
    async def test_apply_marked_and_legacy(self, populated_dir, runner, fake_ledger, fake_executor):
        """Test both files are applied and recorded in order."""
        result = await runner.apply()

        assert [r.version for r in result.applied] == ["20240101", "20240102"]
        assert fake_ledger.versions == ["20240101", "20240102"]
        assert all(r.direction == Direction.UP for r in result.applied)

        # One batch per file, the marked up block as a single statement
        assert len(fake_executor.batches) == 2
        assert fake_executor.batches[0][0].startswith("BEGIN;")
        assert fake_executor.batches[0][0].endswith("COMMIT;")
        assert len(fake_executor.batches[1]) == 2

    @pytest.mark.asyncio
    async def test_records_checksum_and_name(self, populated_dir, runner, fake_ledger):
        """Test ledger rows carry the file checksum and name."""
        await runner.apply()

        first = fake_ledger.records[0]
        assert first.name == "a"
        assert first.checksum == compute_checksum((populated_dir / "20240101_a.sql").read_bytes())
        assert first.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_legacy_warning(self, populated_dir, runner):
        """Test legacy files produce a warning but still apply."""
        result = await runner.apply()

        assert len(result.warnings) == 1
        assert result.warnings[0].filename == "20240102_b.sql"
        assert "legacy" in result.warnings[0].message

    @pytest.mark.asyncio
    async def test_idempotent(self, populated_dir, runner, fake_executor):
        """Test a second apply has nothing to do."""
        await runner.apply()
        second = await runner.apply()

        assert second.is_noop
        assert second.applied == []
        assert len(fake_executor.batches) == 2

    @pytest.mark.asyncio
    async def test_empty_catalog(self, runner, fake_lock):
        """Test apply with no files is a no-op that still releases the lock."""
        result = await runner.apply()
        assert result.is_noop
        assert fake_lock.acquire_count == 1
        assert fake_lock.release_count == 1

    @pytest.mark.asyncio
    async def test_only_new_files_applied(self, populated_dir, catalog, fake_executor):
        """Test versions already in the ledger are skipped."""
        ledger = FakeLedger([AppliedRecord(version="20240101", name="a")])
        runner = MigrationRunner(catalog, ledger, FakeLock(), fake_executor)

        result = await runner.apply()
        assert [r.version for r in result.applied] == ["20240102"]

    @pytest.mark.asyncio
    async def test_dry_run(self, populated_dir, runner, fake_ledger, fake_executor, fake_lock):
        """Test dry-run reports the plan and changes nothing."""
        result = await runner.apply(dry_run=True)

        assert result.dry_run
        assert result.planned == ["20240101_a.sql", "20240102_b.sql"]
        assert result.applied == []
        assert fake_ledger.records == []
        assert fake_executor.batches == []
        assert fake_lock.acquire_count == 1
        assert not fake_lock.held

    @pytest.mark.asyncio
    async def test_empty_up_block(self, migrations_dir, runner, fake_ledger):
        """Test a marked file with a blank up block is fatal."""
        write_migration(
            migrations_dir, "20240101_empty.sql", "-- Up Migration\n\n-- Down Migration\nDROP TABLE t;\n"
        )

        with pytest.raises(EmptyUpMigrationError) as exc_info:
            await runner.apply()
        assert exc_info.value.version == "20240101"
        assert exc_info.value.filename == "20240101_empty.sql"
        assert fake_ledger.records == []

    @pytest.mark.asyncio
    async def test_verbose_logs_statements(self, populated_dir, catalog, fake_ledger, fake_lock, caplog):
        """Test verbose mode logs each statement at debug level."""
        runner = MigrationRunner(catalog, fake_ledger, fake_lock, FakeExecutor(), verbose=True)

        with caplog.at_level(logging.DEBUG, logger="schemashift.db.migrations.runner"):
            await runner.apply()

        assert any("Executing:" in message for message in caplog.messages)


class TestFailure:
    """Tests for failures during apply."""

    @pytest.mark.asyncio
    async def test_failure_stops_run(self, migrations_dir, runner, fake_ledger, fake_executor):
        """Test earlier files stay applied and later ones never run."""
        write_migration(migrations_dir, "20240101_a.sql", MARKED_SQL)
        write_migration(
            migrations_dir,
            "20240102_b.sql",
            "CREATE TABLE ok (id int);\nSELECT broken_stmt;\n",
        )
        write_migration(migrations_dir, "20240103_c.sql", LEGACY_SQL)
        fake_executor.fail_on = "broken_stmt"

        with pytest.raises(MigrationExecutionError):
            await runner.apply()

        assert fake_ledger.versions == ["20240101"]
        assert len(fake_executor.batches) == 1

    @pytest.mark.asyncio
    async def test_error_context(self, migrations_dir, runner, fake_executor):
        """Test the error names the version, file and failing statement."""
        write_migration(
            migrations_dir,
            "20240102_b.sql",
            "CREATE TABLE ok (id int);\nSELECT broken_stmt;\n",
        )
        fake_executor.fail_on = "broken_stmt"

        with pytest.raises(MigrationExecutionError) as exc_info:
            await runner.apply()

        error = exc_info.value
        assert error.version == "20240102"
        assert error.filename == "20240102_b.sql"
        assert error.statement_index == 1
        assert "broken_stmt" in str(error)
        assert "statement=1" in str(error)
        assert error.__cause__ is not None

    @pytest.mark.asyncio
    async def test_lock_held_during_execution(self, populated_dir, runner, fake_executor, fake_lock):
        """Test every batch runs while the lock is held."""
        await runner.apply()

        assert fake_executor.ran_while_locked == [True, True]
        assert not fake_lock.held
        assert fake_lock.release_count == 1

    @pytest.mark.asyncio
    async def test_lock_released_on_failure(self, migrations_dir, runner, fake_executor, fake_lock):
        """Test the lock is released when a migration fails."""
        write_migration(migrations_dir, "20240101_a.sql", "SELECT broken_stmt;\n")
        fake_executor.fail_on = "broken_stmt"

        with pytest.raises(MigrationExecutionError):
            await runner.apply()

        assert not fake_lock.held
        assert fake_lock.release_count == 1

    @pytest.mark.asyncio
    async def test_lock_unavailable(self, populated_dir, catalog, fake_ledger, fake_executor):
        """Test nothing runs when the lock cannot be taken."""
        lock = FakeLock(fail_with=LockUnavailableError("Timeout acquiring migration lock"))
        runner = MigrationRunner(catalog, fake_ledger, lock, fake_executor)

        with pytest.raises(LockUnavailableError):
            await runner.apply()

        assert fake_executor.batches == []
        assert fake_ledger.calls == []
        assert lock.release_count == 0

    @pytest.mark.asyncio
    async def test_lock_error_wrapped(self, populated_dir, catalog, fake_ledger, fake_executor):
        """Test other acquire errors surface as LockUnavailableError."""
        lock = FakeLock(fail_with=OSError("connection reset"))
        runner = MigrationRunner(catalog, fake_ledger, lock, fake_executor)

        with pytest.raises(LockUnavailableError, match="connection reset"):
            await runner.apply()


class TestRollback:
    """Tests for rollback and rollback_to."""

    @pytest.mark.asyncio
    async def test_rollback_last(self, three_marked, runner, fake_ledger, fake_executor):
        """Test rollback undoes only the latest migration."""
        await runner.apply()
        fake_executor.batches.clear()

        result = await runner.rollback()

        assert [r.version for r in result.applied] == ["20240103"]
        assert result.applied[0].direction == Direction.DOWN
        assert fake_ledger.versions == ["20240101", "20240102"]
        assert fake_executor.batches == [["BEGIN;\nDROP TABLE gamma;\nCOMMIT;"]]

    @pytest.mark.asyncio
    async def test_rollback_nothing_applied(self, three_marked, runner, fake_executor):
        """Test rollback with an empty ledger is a no-op."""
        result = await runner.rollback()
        assert result.is_noop
        assert fake_executor.batches == []

    @pytest.mark.asyncio
    async def test_rollback_dry_run(self, three_marked, runner, fake_ledger, fake_executor):
        """Test rollback dry-run plans without executing."""
        await runner.apply()
        fake_executor.batches.clear()

        result = await runner.rollback(dry_run=True)

        assert result.planned == ["20240103_create_gamma.sql"]
        assert result.applied == []
        assert fake_ledger.versions == ["20240101", "20240102", "20240103"]
        assert fake_executor.batches == []

    @pytest.mark.asyncio
    async def test_rollback_to(self, three_marked, runner, fake_ledger, fake_executor):
        """Test rollback_to undoes later migrations most recent first."""
        await runner.apply()
        fake_executor.batches.clear()

        result = await runner.rollback_to("20240101")

        assert [r.version for r in result.applied] == ["20240103", "20240102"]
        assert fake_ledger.versions == ["20240101"]
        assert "gamma" in fake_executor.batches[0][0]
        assert "beta" in fake_executor.batches[1][0]

    @pytest.mark.asyncio
    async def test_rollback_to_latest(self, three_marked, runner, fake_ledger):
        """Test rolling back to the latest version changes nothing."""
        await runner.apply()

        result = await runner.rollback_to("20240103")
        assert result.is_noop
        assert fake_ledger.versions == ["20240101", "20240102", "20240103"]

    @pytest.mark.asyncio
    async def test_rollback_to_unknown(self, three_marked, runner, fake_lock):
        """Test an unapplied target raises and releases the lock."""
        await runner.apply()

        with pytest.raises(VersionNotFoundError):
            await runner.rollback_to("20991231")
        assert not fake_lock.held

    @pytest.mark.asyncio
    async def test_rollback_to_dry_run(self, three_marked, runner, fake_ledger, fake_executor):
        """Test rollback_to dry-run lists the rollback set in order."""
        await runner.apply()
        fake_executor.batches.clear()

        result = await runner.rollback_to("20240101", dry_run=True)

        assert result.planned == ["20240103_create_gamma.sql", "20240102_create_beta.sql"]
        assert fake_executor.batches == []
        assert len(fake_ledger.versions) == 3

    @pytest.mark.asyncio
    async def test_missing_source_file(self, three_marked, catalog, fake_lock, fake_executor):
        """Test a missing file aborts before anything is rolled back."""
        ledger = FakeLedger(
            [
                AppliedRecord(version="20240101", name="create alpha"),
                AppliedRecord(version="20240102_000000", name="lost"),
                AppliedRecord(version="20240103", name="create gamma"),
            ]
        )
        runner = MigrationRunner(catalog, ledger, fake_lock, fake_executor)

        with pytest.raises(SourceFileMissingError) as exc_info:
            await runner.rollback_to("20240101")

        assert exc_info.value.version == "20240102_000000"
        assert fake_executor.batches == []
        assert len(ledger.records) == 3

    @pytest.mark.asyncio
    async def test_legacy_rollback(self, populated_dir, runner, fake_ledger):
        """Test rolling back a legacy file is fatal and keeps it applied."""
        await runner.apply()

        with pytest.raises(MissingDownMigrationError, match="Legacy migration") as exc_info:
            await runner.rollback()

        assert exc_info.value.filename == "20240102_b.sql"
        assert fake_ledger.versions == ["20240101", "20240102"]

    @pytest.mark.asyncio
    async def test_marked_empty_down(self, migrations_dir, runner, fake_ledger):
        """Test rolling back a marked file without a down block is fatal."""
        write_migration(
            migrations_dir, "20240101_a.sql", "-- Up Migration\nSELECT 1;\n-- Down Migration\n"
        )
        await runner.apply()

        with pytest.raises(MissingDownMigrationError, match="No DOWN migration found"):
            await runner.rollback()
        assert fake_ledger.versions == ["20240101"]


class TestStatus:
    """Tests for MigrationRunner.get_status."""

    @pytest.mark.asyncio
    async def test_status_counts(self, populated_dir, catalog, fake_executor):
        """Test applied and pending are split correctly."""
        ledger = FakeLedger([AppliedRecord(version="20240101", name="a")])
        runner = MigrationRunner(catalog, ledger, FakeLock(), fake_executor)

        status = await runner.get_status()
        assert [r.version for r in status.applied] == ["20240101"]
        assert [m.version for m in status.pending] == ["20240102"]
        assert status.total == 2

    @pytest.mark.asyncio
    async def test_status_does_not_lock(self, populated_dir, runner, fake_lock):
        """Test status is read-only."""
        await runner.get_status()
        assert fake_lock.acquire_count == 0

    @pytest.mark.asyncio
    async def test_drift_and_orphans(self, populated_dir, runner, fake_ledger):
        """Test edited files and missing files are reported."""
        await runner.apply()
        (populated_dir / "20240101_a.sql").write_text(MARKED_SQL + "\n-- edited\n")
        (populated_dir / "20240102_b.sql").unlink()

        status = await runner.get_status()

        assert [record.version for record, _ in status.drifted] == ["20240101"]
        assert [record.version for record in status.orphaned] == ["20240102"]
        assert status.pending == []


class TestValidate:
    """Tests for validate_migrations."""

    def test_valid_and_legacy(self, populated_dir, catalog):
        """Test the sample files pass with legacy warnings only."""
        report = validate_migrations(catalog)

        assert report.is_valid
        assert report.error_count == 0
        marked, legacy = report.files
        assert marked.warnings == []
        assert "Legacy migration format (no DOWN migration)" in legacy.warnings
        assert "UP migration missing transaction block" in legacy.warnings

    def test_errors(self, migrations_dir, catalog):
        """Test empty blocks are reported as errors."""
        write_migration(
            migrations_dir, "20240101_a.sql", "-- Up Migration\n\n-- Down Migration\nDROP TABLE t;\n"
        )
        write_migration(
            migrations_dir, "20240102_b.sql", "-- Up Migration\nBEGIN;\nSELECT 1;\nCOMMIT;\n"
        )

        report = validate_migrations(catalog)

        assert not report.is_valid
        assert report.files[0].errors == ["No UP migration found"]
        assert report.files[1].errors == ["No DOWN migration found"]
        assert report.error_count == 2

    def test_down_without_transaction(self, migrations_dir, catalog):
        """Test a down block without BEGIN/COMMIT is a warning."""
        write_migration(
            migrations_dir,
            "20240101_a.sql",
            "-- Up Migration\nBEGIN;\nSELECT 1;\nCOMMIT;\n-- Down Migration\nDROP TABLE t;\n",
        )

        report = validate_migrations(catalog)

        assert report.is_valid
        assert report.files[0].warnings == ["DOWN migration missing transaction block"]
        assert report.warning_count == 1

    def test_runner_validate_never_touches_collaborators(self, populated_dir, runner, fake_ledger, fake_lock):
        """Test validation needs no ledger or lock."""
        report = runner.validate()

        assert len(report.files) == 2
        assert fake_ledger.calls == []
        assert fake_lock.acquire_count == 0
