"""DentalFlow CLI - backup and restore commands."""
from pathlib import Path
from typing import Optional

import click

from dentalflow.backup import BackupEngine
from dentalflow.database import ConnectionManager
from dentalflow.errors import ConfirmationRequiredError
from dentalflow.restore import RestoreEngine
from dentalflow.settings import BACKUP_MODES
from dentalflow.storage_backends import StorageError, create_remote_store_from_config

from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    fail_result,
    get_verbosity,
    load_settings,
)


def _remote_store(settings, verbosity: int):
    try:
        return create_remote_store_from_config(settings.data)
    except (ValueError, StorageError) as e:
        fail(f"Remote store misconfigured: {e}", verbosity)


@click.group()
def backup_group():
    """Backup commands."""
    pass


@backup_group.command('run')
@click.option('--password', '-p', default=None,
              help='Encrypt the backup with this password')
@click.option('--mode', type=click.Choice(BACKUP_MODES), default=None,
              help='Destination (default: backup.mode from config)')
@click.pass_context
def backup_run(ctx, password: Optional[str], mode: Optional[str]) -> None:
    """Back up the clinic database now.

    \b
    Examples:
        dentalflow backup run
        dentalflow backup run --mode local --password correct-horse
    """
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)
    db_path = settings.database_path
    if not db_path.exists():
        fail(f"No database at {db_path}", verbosity)

    remote = _remote_store(settings, verbosity)
    with ConnectionManager(db_path) as connection:
        result = BackupEngine(connection, settings, remote=remote).perform_backup(
            password=password, mode=mode or settings.backup_mode
        )

    if not result.success:
        fail_result(result, verbosity)

    targets = [name for name, done in (("cloud", result.cloud), ("local", result.local)) if done]
    if not targets:
        echo_quiet(click.style("⚠ Backup created but not stored anywhere "
                               "(check backup.local_path and remote settings)", fg="yellow"), verbosity)
        return
    echo_normal(click.style(f"✓ Backup stored ({', '.join(targets)})"
                            f"{' [encrypted]' if result.encrypted else ''}", fg="green"), verbosity)
    if result.local_path:
        echo_verbose(f"  Local file: {result.local_path}", verbosity)


@backup_group.command('list')
@click.option('--cloud', is_flag=True, default=False, help='List cloud backups instead')
@click.pass_context
def backup_list(ctx, cloud: bool) -> None:
    """List available backups."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)

    if cloud:
        remote = _remote_store(settings, verbosity)
        if remote is None:
            fail("No remote store configured (set remote.bucket)", verbosity)
        try:
            files = remote.list_files()
        except StorageError as e:
            fail(str(e), verbosity)
        for remote_file in files:
            created = remote_file.created_at.isoformat() if remote_file.created_at else "?"
            echo_quiet(f"{remote_file.id}  {remote_file.size:>10}  {created}", verbosity)
        echo_verbose(f"{len(files)} cloud backup(s)", verbosity)
        return

    engine = BackupEngine(ConnectionManager(settings.database_path), settings)
    backups = engine.list_local_backups()
    for info in backups:
        flag = " [encrypted]" if info.encrypted else ""
        echo_quiet(f"{info.path.name}  {info.size_bytes:>10}  {info.modified_at.isoformat()}{flag}", verbosity)
    if not backups:
        echo_normal("No local backups found", verbosity)


@backup_group.command('prune')
@click.option('--keep', type=int, default=None, help='Backups to keep (default: backup.retention_count)')
@click.option('--cloud', is_flag=True, default=False,
              help='Prune timestamped dental_backup_* files from the cloud folder instead')
@click.pass_context
def backup_prune(ctx, keep: Optional[int], cloud: bool) -> None:
    """Delete old backups beyond the retention count."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)
    if keep is None:
        keep = settings.retention_count

    remote = _remote_store(settings, verbosity) if cloud else None
    if cloud and remote is None:
        fail("No remote store configured (set remote.bucket)", verbosity)

    engine = BackupEngine(ConnectionManager(settings.database_path), settings, remote=remote)
    try:
        deleted = engine.prune_cloud_backups(keep=keep) if cloud else engine.prune_local_backups(keep=keep)
    except (ValueError, StorageError) as e:
        fail(str(e), verbosity)
    echo_normal(click.style(f"✓ Deleted {deleted} old backup(s), kept {keep}", fg="green"), verbosity)


@click.group()
def restore_group():
    """Restore commands."""
    pass


def _run_restore(ctx, restore, force: bool) -> None:
    """Run a restore, asking before overriding an ownership check."""
    verbosity = get_verbosity(ctx)
    result = restore(force)

    if (not result.success and result.code == ConfirmationRequiredError.code
            and not force and result.identity):
        if click.confirm(f"This backup belongs to {result.identity}. Restore it anyway?"):
            result = restore(True)

    if not result.success:
        if result.rolled_back:
            echo_quiet(click.style("Restore rolled back; your data is unchanged.", fg="yellow"), verbosity)
        fail_result(result, verbosity)

    echo_normal(click.style("✓ Database restored", fg="green"), verbosity)
    if result.identity:
        echo_verbose(f"  Backup owner: {result.identity}", verbosity)


@restore_group.command('local')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--password', '-p', default=None, help='Password of an encrypted backup')
@click.option('--email', default=None, help='Expected account email of the backup')
@click.option('--force', is_flag=True, default=False, help='Restore even if the owner differs')
@click.pass_context
def restore_local(ctx, path: Path, password: Optional[str], email: Optional[str], force: bool) -> None:
    """Restore the clinic database from a backup file.

    \b
    Examples:
        dentalflow restore local ~/ClinicBackups/dental_backup_20240101_120000_000000.db
        dentalflow restore local backup.db.enc --password correct-horse
    """
    settings = load_settings(ctx)
    with ConnectionManager(settings.database_path) as connection:
        engine = RestoreEngine(connection)
        _run_restore(ctx, lambda forced: engine.restore_from_local_file(
            path, password=password, verify_email=email, force=forced), force)


@restore_group.command('cloud')
@click.option('--file-id', default=None, help='Remote backup to restore (default: the latest fixed-name backup)')
@click.option('--password', '-p', default=None, help='Password of an encrypted backup')
@click.option('--email', default=None, help='Expected account email of the backup')
@click.option('--force', is_flag=True, default=False, help='Restore even if the owner differs')
@click.pass_context
def restore_cloud(ctx, file_id: Optional[str], password: Optional[str],
                  email: Optional[str], force: bool) -> None:
    """Restore the clinic database from the cloud backup folder."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)
    remote = _remote_store(settings, verbosity)
    if remote is None:
        fail("No remote store configured (set remote.bucket)", verbosity)

    with ConnectionManager(settings.database_path) as connection:
        engine = RestoreEngine(connection, remote=remote)
        _run_restore(ctx, lambda forced: engine.restore_from_cloud(
            file_id=file_id, password=password, verify_email=email, force=forced), force)
