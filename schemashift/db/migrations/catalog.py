"""Migration catalog for discovering and ordering migration files.

Provides:
- Discovery of ``.sql`` migration files in a directory
- Filename (= chronological) ordering
- Lookup by version
- Creation of new migration files from the template
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .base import DuplicateVersionError, MigrationError, MigrationFile
from .versioning import generate_timestamp

logger = logging.getLogger(__name__)

MIGRATION_TEMPLATE = """-- Migration: {description}
-- Created: {created}

-- Up Migration
BEGIN;

-- Add your UP migration SQL here
-- Example:
-- CREATE TABLE example_table (
--     id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
--     name VARCHAR(255) NOT NULL,
--     created_at TIMESTAMP DEFAULT NOW()
-- );

COMMIT;

-- Down Migration
BEGIN;

-- Add your DOWN migration SQL here
-- Example:
-- DROP TABLE IF EXISTS example_table;

COMMIT;
"""


def slugify_name(name: str) -> str:
    """Normalize a migration name for use in a filename.

    Examples:
        >>> slugify_name("Add-User Preferences")
        'add_user_preferences'
    """
    return re.sub(r"[^a-z0-9]", "_", name.lower())


class MigrationCatalog:
    """Catalog of migration files in a directory.

    Every call re-reads the directory; nothing is cached across operations.
    Files whose name has no version prefix are not migrations and are
    skipped.
    """

    def __init__(self, directory: Path):
        """Initialize the catalog.

        Args:
            directory: Directory containing ``.sql`` migration files
        """
        self.directory = Path(directory)

    def discover(self) -> list[MigrationFile]:
        """Get all migration files sorted by filename.

        Creates the directory when it does not exist.

        Returns:
            Migration files in lexicographic filename order

        Raises:
            DuplicateVersionError: If two files resolve to the same version
        """
        if not self.directory.exists():
            logger.info(f"Creating migrations directory: {self.directory}")
            self.directory.mkdir(parents=True, exist_ok=True)
            return []

        files: list[MigrationFile] = []
        seen: dict[str, str] = {}

        for path in sorted(self.directory.glob("*.sql"), key=lambda p: p.name):
            if not path.is_file():
                continue

            migration = MigrationFile.from_path(path)
            version = migration.version
            if version is None:
                logger.debug(f"Skipping non-migration file: {path.name}")
                continue

            if version in seen:
                raise DuplicateVersionError(
                    f"Duplicate migration version {version}: {seen[version]} and {path.name}",
                    version=version,
                    filename=path.name,
                )
            seen[version] = path.name
            files.append(migration)

        logger.debug(f"Discovered {len(files)} migrations in {self.directory}")
        return files

    def get(self, version: str) -> Optional[MigrationFile]:
        """Get a migration file by version.

        Args:
            version: Version token

        Returns:
            MigrationFile or None
        """
        for migration in self.discover():
            if migration.version == version:
                return migration
        return None

    def get_versions(self) -> list[str]:
        """Get all versions in order."""
        return [m.version for m in self.discover() if m.version]

    def create(self, name: str, now: Optional[datetime] = None) -> Path:
        """Create a new migration file from the template.

        Args:
            name: Migration name (e.g., add_user_preferences)
            now: Creation time (defaults to the current local time)

        Returns:
            Path of the new file

        Raises:
            MigrationError: If the name is empty or the file already exists
        """
        if not name or not name.strip():
            raise MigrationError("Migration name is required")

        now = now or datetime.now()
        filename = f"{generate_timestamp(now)}_{slugify_name(name.strip())}.sql"

        self.directory.mkdir(parents=True, exist_ok=True)
        filepath = self.directory / filename

        if filepath.exists():
            raise MigrationError(f"Migration file already exists: {filepath}", filename=filename)

        template = MIGRATION_TEMPLATE.format(
            description=name.strip().replace("_", " "),
            created=now.isoformat(timespec="seconds"),
        )
        filepath.write_text(template, encoding="utf-8")

        logger.info(f"Created migration: {filepath}")
        return filepath
