"""DB-specific pytest fixtures.

Provides fixtures for testing the connection, ledger, lock and executor
with the asyncpg layer mocked out.
"""

import pytest

from schemashift.db.config import MigrationConfig
from schemashift.db.connection import Connection

from tests.helpers.mock_factories import create_mock_asyncpg_connection, create_mock_connection


@pytest.fixture
def mock_config():
    """Create a test configuration."""
    return MigrationConfig(
        database_url=None,
        host="localhost",
        port=5432,
        database="test_db",
        user="tester",
        password="secret",
        ssl=False,
        application_name="migration_runner",
        connect_timeout=5.0,
        query_timeout=30.0,
        lock_id="migration_lock",
        lock_timeout=1.0,
        migrations_table="schema_migrations",
    )


@pytest.fixture
def mock_asyncpg_conn():
    """Create a mock raw asyncpg connection."""
    return create_mock_asyncpg_connection()


@pytest.fixture
def connected(mock_config, mock_asyncpg_conn):
    """Create a Connection whose driver connection is mocked."""
    conn = Connection(mock_config)
    conn._conn = mock_asyncpg_conn
    return conn


@pytest.fixture
def mock_connection():
    """Create a mock Connection for ledger and lock tests."""
    return create_mock_connection()
