"""Test helpers package for shared fakes and mock factories."""

from tests.helpers.mock_factories import (
    LEGACY_SQL,
    MARKED_SQL,
    FakeExecutor,
    FakeLedger,
    FakeLock,
    StatementFailure,
    create_mock_asyncpg_connection,
    create_mock_connection,
    write_migration,
)

__all__ = [
    "LEGACY_SQL",
    "MARKED_SQL",
    "FakeExecutor",
    "FakeLedger",
    "FakeLock",
    "StatementFailure",
    "create_mock_asyncpg_connection",
    "create_mock_connection",
    "write_migration",
]
