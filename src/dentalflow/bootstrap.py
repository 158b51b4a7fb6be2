"""
Startup sequence

open database -> run migrations -> detect current clinic -> record usage
-> scheduled backup check
"""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .backup import BackupEngine
from .database import ConnectionManager
from .meta import MetaStore
from .migrations import MigrationReport, MigrationRunner
from .results import BackupResult
from .settings import Settings
from .storage_backends import create_remote_store_from_config

logger = logging.getLogger(__name__)

SNAPSHOT_SUBDIR = Path("backups") / "system"


def detect_current_clinic(meta: MetaStore) -> Optional[str]:
    """
    Set ``current_clinic_id`` when exactly one clinic exists and none is set.

    Returns:
        The current clinic id, if known
    """
    current = meta.get("current_clinic_id")
    if current:
        return current

    with meta.connection.connection() as conn:
        try:
            rows = conn.execute("SELECT id FROM clinics LIMIT 2").fetchall()
        except sqlite3.OperationalError as e:
            logger.debug(f"Cannot read clinics: {e}")
            return None

    if len(rows) != 1:
        return None
    clinic_id = rows[0][0]
    meta.set("current_clinic_id", clinic_id)
    logger.info(f"Current clinic set to {clinic_id}")
    return clinic_id


def initialize_database(db_path: Path,
                        snapshot_dir: Optional[Path] = None) -> Tuple[ConnectionManager, MigrationReport]:
    """
    Open the clinic database and bring its schema up to date.

    A failed migration does not stop startup: the database stays on the
    last good version and the report says what went wrong.

    Args:
        db_path: Clinic database file
        snapshot_dir: Where to keep pre-migration snapshots

    Returns:
        (connection manager, migration report)
    """
    connection = ConnectionManager(db_path)
    connection.open()

    report = MigrationRunner(connection, snapshot_dir=snapshot_dir).run()
    if report.success:
        logger.info(f"Database ready at v{report.end_version}")
    else:
        logger.error(
            f"Database running on v{report.end_version}; migration "
            f"v{report.failed_version} failed: {report.error}"
        )

    meta = MetaStore(connection)
    detect_current_clinic(meta)
    meta.record_app_usage()
    return connection, report


@dataclass
class StartupState:
    """Everything the application needs after startup."""
    connection: ConnectionManager
    settings: Settings
    migration: MigrationReport
    backup_engine: BackupEngine
    scheduled_backup: Optional[BackupResult] = None


def startup(data_dir: Optional[Path] = None) -> StartupState:
    """
    Full startup: settings, database, migrations and the scheduled backup check.

    Example:
        state = startup()
        patients = PatientRepository(state.connection)
    """
    settings = Settings.load(data_dir)
    db_path = settings.database_path
    connection, report = initialize_database(db_path, snapshot_dir=settings.data_dir / SNAPSHOT_SUBDIR)

    engine = BackupEngine(connection, settings, remote=create_remote_store_from_config(settings.data))
    scheduled = engine.check_and_run_scheduled_backup()
    if scheduled is not None and not scheduled.success:
        logger.warning(f"Scheduled backup failed: {scheduled.error}")

    return StartupState(
        connection=connection,
        settings=settings,
        migration=report,
        backup_engine=engine,
        scheduled_backup=scheduled,
    )
