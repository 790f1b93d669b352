"""Version tokens, names and checksums for migration files.

Filenames follow ``YYYYMMDD[_HHMMSS]_<name>.sql``. Versions are fixed-width,
zero-padded timestamps, so plain string order is chronological order. Any
new version format must keep that property.
"""

import hashlib
import re
from datetime import datetime
from typing import Optional, Union

VERSION_PATTERN = re.compile(r"^(\d{8})(?:_(\d{6}))?")
NAME_PATTERN = re.compile(r"^\d{8}(?:_\d{6})?_(.+)\.sql$")


def extract_version(filename: str) -> Optional[str]:
    """Extract the version token from a migration filename.

    Args:
        filename: Bare filename (no directory)

    Returns:
        ``YYYYMMDD_HHMMSS`` or ``YYYYMMDD``, or None when the filename is
        not a migration file

    Examples:
        >>> extract_version("20251016_120000_add_users.sql")
        '20251016_120000'
        >>> extract_version("20250930_add_name_columns.sql")
        '20250930'
        >>> extract_version("add_credit_indexes.sql") is None
        True
    """
    match = VERSION_PATTERN.match(filename)
    if not match:
        return None
    date, time_of_day = match.groups()
    return f"{date}_{time_of_day}" if time_of_day else date


def extract_name(filename: str) -> str:
    """Extract the human-readable name from a migration filename.

    Strips the version prefix and ``.sql`` suffix and turns underscores into
    spaces. Falls back to the raw filename when the pattern does not match.
    """
    match = NAME_PATTERN.match(filename)
    if not match:
        return filename
    return match.group(1).replace("_", " ")


def compute_checksum(raw_content: Union[bytes, str]) -> str:
    """SHA-256 hex digest of the exact file content.

    Used for drift detection only; str input is hashed as UTF-8.
    """
    if isinstance(raw_content, str):
        raw_content = raw_content.encode("utf-8")
    return hashlib.sha256(raw_content).hexdigest()


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Version token for a new migration created at ``now`` (local time)."""
    now = now or datetime.now()
    return now.strftime("%Y%m%d_%H%M%S")
