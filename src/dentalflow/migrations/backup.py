"""
Pre-migration snapshots.

Before pending migrations touch an existing database, a hot-backup copy
is written to ``backups/system`` so a failed upgrade can be undone by
hand. Only the newest few snapshots are kept.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List

from ..database import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class SnapshotInfo:
    """A pre-migration snapshot file."""
    path: Path
    created_at: datetime
    size_bytes: int


class SnapshotStore:
    """
    Writes and prunes pre-migration snapshots.

    Example:
        store = SnapshotStore(db, db.db_path.parent / "backups" / "system")
        info = store.create_snapshot()
    """

    PREFIX = "clinic_pre_migration_"

    def __init__(self, connection: ConnectionManager, snapshot_dir: Path, keep_count: int = 5):
        if keep_count < 1:
            raise ValueError(f"keep_count must be >= 1, got {keep_count}")
        self.connection = connection
        self.snapshot_dir = Path(snapshot_dir)
        self.keep_count = keep_count

    def create_snapshot(self) -> SnapshotInfo:
        """
        Raises:
            sqlite3.Error: If the backup API fails
            OSError: If the snapshot file cannot be written
        """
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self.snapshot_dir / f"{self.PREFIX}{timestamp}.db"

        self.connection.backup_to(path)
        info = SnapshotInfo(path=path, created_at=datetime.now(), size_bytes=path.stat().st_size)
        logger.info(f"Pre-migration snapshot written to {path}")

        self.cleanup()
        return info

    def list_snapshots(self) -> List[SnapshotInfo]:
        """Snapshots, newest first."""
        snapshots = []
        if not self.snapshot_dir.exists():
            return snapshots
        for path in self.snapshot_dir.glob(f"{self.PREFIX}*.db"):
            stat = path.stat()
            snapshots.append(SnapshotInfo(
                path=path,
                created_at=datetime.fromtimestamp(stat.st_mtime),
                size_bytes=stat.st_size,
            ))
        snapshots.sort(key=lambda s: (s.created_at, s.path.name), reverse=True)
        return snapshots

    def cleanup(self) -> int:
        """Delete all but the newest ``keep_count`` snapshots."""
        deleted = 0
        for info in self.list_snapshots()[self.keep_count:]:
            try:
                info.path.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Could not delete old snapshot {info.path}: {e}")
        return deleted
