"""
Migration Runner

Brings the Schema Store up to the latest migration at startup. Each
pending migration runs in its own transaction together with the update of
``last_migration_version``, so the counter only ever advances with a
committed transform. A failing migration is rolled back, logged, and
stops the run; the application continues on the last good version.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..database import ConnectionManager
from ..errors import MigrationError
from ..meta import MetaStore
from .backup import SnapshotStore
from .manager import MigrationHistory
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)

# Tables that exist even before the clinic schema is created.
_INTERNAL_TABLES = {"app_meta", "_migrations", "sqlite_sequence"}


@dataclass
class MigrationReport:
    """Outcome of one runner invocation."""
    start_version: int = 0
    end_version: int = 0
    applied: List[int] = field(default_factory=list)
    failed_version: Optional[int] = None
    error: Optional[str] = None
    code: Optional[str] = None
    snapshot_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def fail(self, error: str, version: Optional[int] = None) -> None:
        self.error = error
        self.failed_version = version
        self.code = MigrationError.code

    def raise_for_error(self) -> None:
        """
        Raises:
            MigrationError: If the run did not complete
        """
        if not self.success:
            raise MigrationError(self.error, version=self.failed_version)


class MigrationRunner:
    """
    Applies pending migrations in order, each exactly once.

    Example:
        db = ConnectionManager(db_path)
        report = MigrationRunner(db, snapshot_dir=db_path.parent / "backups" / "system").run()
        if not report.success:
            logger.error(f"Running degraded at v{report.end_version}")
    """

    def __init__(self,
                 connection: ConnectionManager,
                 registry: Optional[MigrationRegistry] = None,
                 snapshot_dir: Optional[Path] = None):
        """
        Args:
            connection: Connection manager for the Schema Store
            registry: Migration source (default: bundled versions package)
            snapshot_dir: Where to write a pre-migration snapshot; None disables it
        """
        self.connection = connection
        self.registry = registry or MigrationRegistry()
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir else None
        self.meta = MetaStore(connection)
        self.history = MigrationHistory()

    def _has_user_tables(self) -> bool:
        with self.connection.connection() as conn:
            names = {row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            )}
        return bool(names - _INTERNAL_TABLES)

    def run(self) -> MigrationReport:
        """
        Apply every pending migration.

        Never raises; failures are logged and reported.
        """
        report = MigrationReport()
        try:
            self.connection.open()
            self.meta.ensure_table()
            report.start_version = report.end_version = self.meta.get_migration_version()
            pending = self.registry.get_pending_migrations(report.start_version)
        except Exception as e:
            logger.exception(f"Migration setup failed: {e}")
            report.fail(str(e))
            return report

        if not pending:
            logger.debug(f"Schema is current at v{report.start_version}")
            return report

        if self.snapshot_dir is not None and self._has_user_tables():
            try:
                report.snapshot_path = SnapshotStore(self.connection, self.snapshot_dir).create_snapshot().path
            except Exception as e:
                logger.error(f"Pre-migration snapshot failed, migrations skipped: {e}")
                report.fail(f"Pre-migration snapshot failed: {e}")
                return report

        # Each history row points at the snapshot that predates it
        history_metadata = {"snapshot": report.snapshot_path.name} if report.snapshot_path else None

        logger.info(
            f"Applying {len(pending)} migration(s) from v{report.start_version} "
            f"to v{pending[-1].version}"
        )

        # foreign_keys cannot change inside a transaction
        with self.connection.connection() as conn:
            conn.execute("PRAGMA foreign_keys=OFF")
        try:
            for migration in pending:
                started = time.perf_counter()
                try:
                    with self.connection.transaction() as conn:
                        migration.validate(conn)
                        migration.up(conn)
                        duration_ms = int((time.perf_counter() - started) * 1000)
                        self.history.record(conn, migration.version, migration.description,
                                            duration_ms, metadata=history_metadata)
                        self.meta.set_migration_version(migration.version)
                except Exception as e:
                    logger.exception(f"Migration {migration} failed and was rolled back: {e}")
                    report.fail(str(e), version=migration.version)
                    break

                report.applied.append(migration.version)
                report.end_version = migration.version
                logger.info(f"Applied {migration} in {duration_ms}ms")
        finally:
            with self.connection.connection() as conn:
                conn.execute("PRAGMA foreign_keys=ON")
                violations = conn.execute("PRAGMA foreign_key_check").fetchall()
            if violations:
                logger.warning(f"{len(violations)} foreign key violation(s) after migrations")

        return report
