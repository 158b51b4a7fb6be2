"""DentalFlow CLI - schema commands (migrate, status)."""
import click

from dentalflow.bootstrap import SNAPSHOT_SUBDIR, initialize_database
from dentalflow.database import ConnectionManager
from dentalflow.errors import MigrationError
from dentalflow.meta import MetaStore
from dentalflow.migrations import MigrationRegistry
from dentalflow.migrations.manager import MigrationHistory

from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    get_verbosity,
    load_settings,
)


@click.group()
def migrate_group():
    """Schema commands."""
    pass


@migrate_group.command()
@click.option('--no-snapshot', is_flag=True, default=False,
              help='Skip the pre-migration snapshot')
@click.pass_context
def migrate(ctx, no_snapshot: bool) -> None:
    """Apply pending database migrations."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)
    snapshot_dir = None if no_snapshot else settings.data_dir / SNAPSHOT_SUBDIR

    connection, report = initialize_database(settings.database_path, snapshot_dir=snapshot_dir)
    connection.close()

    if report.snapshot_path:
        echo_verbose(f"Snapshot: {report.snapshot_path}", verbosity)
    for version in report.applied:
        echo_verbose(f"  applied v{version:03d}", verbosity)

    try:
        report.raise_for_error()
    except MigrationError as e:
        fail(f"Migration v{e.version} failed: {e.message} [{e.code}] "
             f"(database left at v{report.end_version})", verbosity)

    if report.applied:
        echo_normal(click.style(
            f"✓ Migrated v{report.start_version} -> v{report.end_version} "
            f"({len(report.applied)} applied)", fg="green"), verbosity)
    else:
        echo_normal(click.style(f"✓ Schema is current (v{report.end_version})", fg="green"), verbosity)


@migrate_group.command()
@click.pass_context
def status(ctx) -> None:
    """Show schema version, migration history and backup state."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)
    db_path = settings.database_path

    if not db_path.exists():
        fail(f"No database at {db_path}. Run 'dentalflow migrate' first.", verbosity)

    registry = MigrationRegistry()
    registry.discover()

    with ConnectionManager(db_path) as connection:
        meta = MetaStore(connection)
        version = meta.get_migration_version()
        read_only = meta.is_read_only()
        with connection.connection() as conn:
            applied = MigrationHistory().get_applied(conn)

    latest = registry.get_latest_version()
    echo_normal(click.style("DentalFlow Status", fg="cyan", bold=True), verbosity)
    echo_normal("=" * 40, verbosity)
    echo_quiet(f"Database:       {db_path}", verbosity)
    echo_quiet(f"Schema version: v{version} (latest v{latest})", verbosity)
    if version < latest:
        echo_quiet(click.style(f"Pending:        {latest - version} migration(s)", fg="yellow"), verbosity)
    echo_quiet(f"Read-only:      {'yes' if read_only else 'no'}", verbosity)

    last_backup = settings.last_backup_at
    echo_quiet(f"Last backup:    {last_backup.isoformat() if last_backup else 'never'}", verbosity)
    echo_quiet(f"Backup schedule: {settings.backup_frequency} ({settings.backup_mode})", verbosity)

    for record in applied:
        snapshot = (record.metadata or {}).get("snapshot")
        echo_verbose(f"  v{record.version:03d} {record.description} "
                     f"({record.duration_ms}ms, {record.applied_at})"
                     f"{f' after snapshot {snapshot}' if snapshot else ''}", verbosity)
