"""Reconcile migration files against the applied-migrations ledger.

Pure functions over the catalog and the ledger rows; nothing here touches
the database.
"""

from collections.abc import Collection, Sequence
from typing import Optional

from .base import AppliedRecord, MigrationFile, VersionNotFoundError


def pending_migrations(
    catalog: Sequence[MigrationFile],
    applied_versions: Collection[str],
) -> list[MigrationFile]:
    """Files whose version has not been applied, in catalog order.

    Args:
        catalog: Migration files sorted by filename
        applied_versions: Versions present in the ledger

    Returns:
        Pending migration files, oldest first
    """
    applied = set(applied_versions)
    return [m for m in catalog if m.version not in applied]


def rollback_targets(
    applied: Sequence[AppliedRecord],
    target_version: str,
) -> list[AppliedRecord]:
    """Records to undo to get back to ``target_version``.

    Args:
        applied: Applied records in application order
        target_version: Version to roll back to (stays applied)

    Returns:
        Records applied after the target, most recent first. Empty when the
        target is already the latest applied version.

    Raises:
        VersionNotFoundError: If the target is not an applied version
    """
    versions = [record.version for record in applied]
    if target_version not in versions:
        raise VersionNotFoundError(
            f"Version {target_version} not found in applied migrations",
            version=target_version,
        )

    index = versions.index(target_version)
    return list(reversed(applied[index + 1 :]))


def last_applied(applied: Sequence[AppliedRecord]) -> Optional[AppliedRecord]:
    """The most recently applied record, or None."""
    return applied[-1] if applied else None


def find_checksum_drift(
    catalog: Sequence[MigrationFile],
    applied: Sequence[AppliedRecord],
) -> list[tuple[AppliedRecord, MigrationFile]]:
    """Applied migrations whose file changed since it was applied.

    Records without a stored checksum are not reported.
    """
    by_version = {m.version: m for m in catalog}
    drifted = []
    for record in applied:
        migration = by_version.get(record.version)
        if migration and record.checksum and record.checksum != migration.checksum:
            drifted.append((record, migration))
    return drifted


def find_orphaned_records(
    catalog: Sequence[MigrationFile],
    applied: Sequence[AppliedRecord],
) -> list[AppliedRecord]:
    """Applied records with no migration file on disk."""
    versions = {m.version for m in catalog}
    return [record for record in applied if record.version not in versions]
