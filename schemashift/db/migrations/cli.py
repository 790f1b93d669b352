"""CLI for database migrations.

Usage:
    python -m schemashift.db.migrations up
    python -m schemashift.db.migrations up --dry-run
    python -m schemashift.db.migrations down
    python -m schemashift.db.migrations rollback 20251016_120000
    python -m schemashift.db.migrations status
    python -m schemashift.db.migrations validate
    python -m schemashift.db.migrations create add_user_preferences
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from textwrap import dedent

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import ConfigError, get_config
from ..connection import Connection, ConnectionError, QueryError, get_connection
from ..ledger import create_collaborators
from .base import MigrationError
from .catalog import MigrationCatalog
from .runner import MigrationResult, MigrationRunner, validate_migrations

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_catalog(args: argparse.Namespace) -> MigrationCatalog:
    """Catalog for ``--dir`` or the configured migrations directory."""
    directory = Path(args.dir) if args.dir else get_config().migrations_dir
    return MigrationCatalog(directory)


def print_result(result: MigrationResult, verb: str) -> None:
    """Print the outcome of an apply or rollback."""
    if result.dry_run:
        console.print(f"[yellow]\\[DRY-RUN] Would {verb} {len(result.planned)} migration(s):[/yellow]")
        for filename in result.planned:
            console.print(f"  {escape(filename)}")
        return

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(str(warning))}")

    for record in result.applied:
        console.print(
            f"  [green]✓[/green] {escape(record.version)} - {escape(record.name)} "
            f"({record.execution_time_ms}ms, {record.statement_count} statement(s))"
        )


async def cmd_up(runner: MigrationRunner, args: argparse.Namespace) -> int:
    """Apply pending migrations."""
    result = await runner.apply(dry_run=args.dry_run)
    if result.is_noop:
        console.print("[green]No pending migrations[/green]")
        return 0

    print_result(result, "apply")
    if not result.dry_run:
        console.print(f"\n[green]Applied {len(result.applied)} migration(s)[/green]")
    return 0


async def cmd_down(runner: MigrationRunner, args: argparse.Namespace) -> int:
    """Rollback the last applied migration."""
    result = await runner.rollback(dry_run=args.dry_run)
    if result.is_noop:
        console.print("[green]No migrations to rollback[/green]")
        return 0

    print_result(result, "rollback")
    if not result.dry_run:
        console.print("\n[green]Migration rolled back successfully[/green]")
    return 0


async def cmd_rollback(runner: MigrationRunner, args: argparse.Namespace) -> int:
    """Rollback to a specific version."""
    result = await runner.rollback_to(args.version, dry_run=args.dry_run)
    if result.is_noop:
        console.print(f"[green]Already at target version {args.version}[/green]")
        return 0

    print_result(result, "rollback")
    if not result.dry_run:
        console.print("\n[green]Rollback completed successfully[/green]")
    return 0


async def cmd_status(runner: MigrationRunner, conn: Connection) -> int:
    """Show migration status."""
    report = await runner.get_status()

    table = Table(title="Migration Status")
    table.add_column("", width=3)
    table.add_column("Version")
    table.add_column("Name")
    table.add_column("Applied")
    table.add_column("Time", justify="right")

    drifted = {record.version for record, _ in report.drifted}
    orphaned = {record.version for record in report.orphaned}

    for record in report.applied:
        if record.version in orphaned:
            icon = "[red]\\[?][/red]"
        elif record.version in drifted:
            icon = "[yellow]\\[~][/yellow]"
        else:
            icon = "[green]\\[x][/green]"
        table.add_row(
            icon,
            escape(record.version),
            escape(record.name),
            record.applied_at.strftime("%Y-%m-%d %H:%M") if record.applied_at else "",
            f"{record.execution_time_ms}ms" if record.execution_time_ms is not None else "",
        )
    for migration in report.pending:
        table.add_row("\\[ ]", escape(migration.version or ""), escape(migration.name), "", "")

    console.print(table)
    console.print(
        f"Total: {report.total} | Applied: {len(report.applied)} | Pending: {len(report.pending)}"
    )

    for record, migration in report.drifted:
        console.print(f"[yellow]Modified after apply:[/yellow] {escape(migration.filename)}")
    for record in report.orphaned:
        console.print(
            f"[red]No file for applied version:[/red] "
            f"{escape(record.version)} - {escape(record.name)}"
        )

    info = await conn.database_info()
    console.print(f"\nDatabase: {info.database} | User: {info.user} | {info.short_version}")
    return 0


async def cmd_test(conn: Connection) -> int:
    """Test the database connection."""
    info = await conn.database_info()
    console.print("[green]Database connection test passed[/green]")
    console.print(f"  Database: {info.database}")
    console.print(f"  User: {info.user}")
    console.print(f"  Timestamp: {info.timestamp}")
    console.print(f"  Version: {info.short_version}")
    return 0


def cmd_validate(catalog: MigrationCatalog) -> int:
    """Validate all migration files."""
    report = validate_migrations(catalog)

    if not report.files:
        console.print("No migrations found")
        return 0

    for check in report.files:
        icon = "[green]✓[/green]" if check.is_valid else "[red]✗[/red]"
        console.print(f"{icon} {escape(check.filename)}")
        for error in check.errors:
            console.print(f"    [red]{escape(error)}[/red]")
        for warning in check.warnings:
            console.print(f"    [yellow]{escape(warning)}[/yellow]")

    console.print(
        f"\n{len(report.files)} file(s) | Errors: {report.error_count} | "
        f"Warnings: {report.warning_count}"
    )
    if not report.is_valid:
        console.print("[red]Migration validation failed[/red]")
        return 1

    console.print("[green]All migrations are valid[/green]")
    return 0


def cmd_create(catalog: MigrationCatalog, args: argparse.Namespace) -> int:
    """Create a new migration file."""
    filepath = catalog.create(args.name)

    console.print(f"[green]Created migration:[/green] {escape(filepath.name)}")
    console.print(f"  Location: {escape(str(filepath))}")
    console.print()
    console.print("Next steps:")
    console.print("  1. Edit the migration file with your SQL changes")
    console.print("  2. Run: python -m schemashift.db.migrations up")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="schemashift",
        description="SQL migration management for PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Examples:
              # Apply all pending migrations
              schemashift up

              # Preview the last migration's rollback
              schemashift down --dry-run

              # Rollback everything applied after a version
              schemashift rollback 20241219_120000

              # Create new migration
              schemashift create add_user_preferences
        """),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--dir",
        help="Migrations directory (default: $MIGRATIONS_DIR or database/migrations)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    up_parser = subparsers.add_parser("up", help="Apply all pending migrations")
    up_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without applying changes",
    )

    down_parser = subparsers.add_parser("down", help="Rollback the last migration")
    down_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without applying changes",
    )

    rollback_parser = subparsers.add_parser("rollback", help="Rollback to a specific version")
    rollback_parser.add_argument("version", help="Version to roll back to (stays applied)")
    rollback_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without applying changes",
    )

    subparsers.add_parser("status", help="Show migration status")
    subparsers.add_parser("validate", help="Validate all migration files")
    subparsers.add_parser("test", help="Test database connection")

    create_parser_cmd = subparsers.add_parser("create", help="Create a new migration file")
    create_parser_cmd.add_argument(
        "name",
        help="Migration name (e.g., add_user_preferences)",
    )

    return parser


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    try:
        catalog = get_catalog(args)

        # File-only commands
        if args.command == "create":
            return cmd_create(catalog, args)
        if args.command == "validate":
            return cmd_validate(catalog)

        config = get_config()
        errors = config.validate()
        if errors:
            for error in errors:
                console.print(f"[red]Error:[/red] {escape(error)}")
            return 1

        async with get_connection(config) as conn:
            if args.command == "test":
                return await cmd_test(conn)

            ledger, lock, executor = create_collaborators(conn, config)
            await ledger.ensure_table()
            runner = MigrationRunner(catalog, ledger, lock, executor, verbose=args.verbose)

            if args.command == "up":
                return await cmd_up(runner, args)
            elif args.command == "down":
                return await cmd_down(runner, args)
            elif args.command == "rollback":
                return await cmd_rollback(runner, args)
            elif args.command == "status":
                return await cmd_status(runner, conn)

            console.print(f"Unknown command: {args.command}")
            return 1

    except (ConfigError, MigrationError, ConnectionError, QueryError) as e:
        logger.debug("Migration command failed", exc_info=True)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(args.verbose)

    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
