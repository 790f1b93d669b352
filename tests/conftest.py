"""Pytest fixtures for schemashift tests."""

import pytest

from schemashift.db.config import set_config
from schemashift.db.migrations.catalog import MigrationCatalog
from schemashift.db.migrations.runner import MigrationRunner

from tests.helpers.mock_factories import (
    LEGACY_SQL,
    MARKED_SQL,
    FakeExecutor,
    FakeLedger,
    FakeLock,
    write_migration,
)


@pytest.fixture(autouse=True)
def reset_config():
    """Drop any global config a test installed."""
    yield
    set_config(None)


@pytest.fixture
def migrations_dir(tmp_path):
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def catalog(migrations_dir):
    """Catalog over the temporary migrations directory."""
    return MigrationCatalog(migrations_dir)


@pytest.fixture
def populated_dir(migrations_dir):
    """One marked and one legacy migration."""
    write_migration(migrations_dir, "20240101_a.sql", MARKED_SQL)
    write_migration(migrations_dir, "20240102_b.sql", LEGACY_SQL)
    return migrations_dir


@pytest.fixture
def fake_ledger():
    """Empty in-memory ledger."""
    return FakeLedger()


@pytest.fixture
def fake_lock():
    """Lock that always succeeds."""
    return FakeLock()


@pytest.fixture
def fake_executor(fake_lock):
    """Executor that records batches and whether the lock was held."""
    return FakeExecutor(lock=fake_lock)


@pytest.fixture
def runner(catalog, fake_ledger, fake_lock, fake_executor):
    """Runner wired to the in-memory collaborators."""
    return MigrationRunner(catalog, fake_ledger, fake_lock, fake_executor)
