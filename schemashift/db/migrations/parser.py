"""Extract up/down SQL blocks from migration files.

A file is "marked" when it contains a ``-- Up Migration`` or
``-- Down Migration`` line (case-insensitive). Unmarked files are legacy:
the whole file is the up block and there is no down block.
"""

import logging
import re
from typing import Union

from .base import Direction, LegacyMigration, MarkedMigration, MigrationFile, ParsedMigration
from .versioning import compute_checksum

logger = logging.getLogger(__name__)

UP_MARKER = re.compile(r"-- Up Migration", re.IGNORECASE)
DOWN_MARKER = re.compile(r"-- Down Migration", re.IGNORECASE)

UP_BLOCK = re.compile(
    r"-- Up Migration\s*(?:\n|\Z)(.*?)(?=-- Down Migration|\Z)",
    re.IGNORECASE | re.DOTALL,
)
DOWN_BLOCK = re.compile(
    r"-- Down Migration\s*(?:\n|\Z)(.*)\Z",
    re.IGNORECASE | re.DOTALL,
)


def has_markers(content: str) -> bool:
    """Check whether a migration uses explicit up/down markers."""
    return bool(UP_MARKER.search(content) or DOWN_MARKER.search(content))


def strip_meta_commands(sql: str) -> str:
    """Drop interactive-client meta-command lines (``\\echo``, ``\\set``, ...).

    They are not executable SQL and must never reach the splitter.
    """
    return "\n".join(line for line in sql.split("\n") if not line.strip().startswith("\\"))


def _raw_block(content: str, direction: Direction) -> str:
    marked = has_markers(content)

    if direction == Direction.UP:
        match = UP_BLOCK.search(content)
        if match:
            return match.group(1)
        return "" if marked else content

    match = DOWN_BLOCK.search(content)
    return match.group(1) if match else ""


def extract_sql(content: str, direction: Union[Direction, str]) -> str:
    """Get the SQL for one direction, meta-commands stripped and trimmed.

    Args:
        content: Raw file content
        direction: ``up`` or ``down``

    Returns:
        SQL text; empty for ``down`` on a legacy file
    """
    direction = Direction(direction)
    return strip_meta_commands(_raw_block(content, direction).strip()).strip()


def parse_migration(source: Union[MigrationFile, str]) -> ParsedMigration:
    """Parse a migration into its tagged variant.

    Args:
        source: MigrationFile, or raw content as text

    Returns:
        MarkedMigration or LegacyMigration carrying the content checksum
    """
    if isinstance(source, MigrationFile):
        content = source.content
        checksum = source.checksum
        label = source.filename
    else:
        content = source
        checksum = compute_checksum(source)
        label = "<text>"

    up_sql = extract_sql(content, Direction.UP)

    if not has_markers(content):
        logger.debug(f"Legacy migration format (no markers): {label}")
        return LegacyMigration(up_sql=up_sql, checksum=checksum)

    return MarkedMigration(
        up_sql=up_sql,
        checksum=checksum,
        down=extract_sql(content, Direction.DOWN),
    )
