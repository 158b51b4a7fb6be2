"""
Backup Engine

snapshot -> sanitize -> verify -> (encrypt) -> (upload) -> (local mirror + prune)

The live database is only ever read, through the SQLite online backup
API. Everything else happens on a temporary copy that is removed when
the run ends, whatever the outcome.
"""

import json
import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from .crypto import BackupCipher
from .database import ConnectionManager
from .errors import CorruptedFileError, DentalFlowError
from .integrity import IntegrityChecker
from .license import LicenseSanitizer
from .results import BackupResult
from .settings import BACKUP_FREQUENCIES, BACKUP_MODES, Settings
from .storage_backends import RemoteStore

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "dental_backup_"
CLOUD_FILENAME = "dental_clinic_backup.db"
PLAIN_MIME_TYPE = "application/x-sqlite3"
ENCRYPTED_MIME_TYPE = "application/octet-stream"


@dataclass
class LocalBackupInfo:
    """A backup file in the local backup folder"""
    path: Path
    size_bytes: int
    modified_at: datetime
    encrypted: bool


def is_backup_filename(name: str) -> bool:
    return name.startswith(BACKUP_PREFIX) and (name.endswith(".db") or name.endswith(".enc"))


class BackupEngine:
    """
    Produces sanitized, verified, optionally encrypted backups.

    Example:
        engine = BackupEngine(db, Settings.load(data_dir), remote=store)
        result = engine.perform_backup(password="correct-horse", mode="both")
        if not result.success:
            print(result.error)
    """

    def __init__(self,
                 connection: ConnectionManager,
                 settings: Settings,
                 remote: Optional[RemoteStore] = None,
                 cipher: Optional[BackupCipher] = None,
                 sanitizer: Optional[LicenseSanitizer] = None,
                 integrity: Optional[IntegrityChecker] = None,
                 temp_dir: Optional[Path] = None):
        self.connection = connection
        self.settings = settings
        self.remote = remote
        self.cipher = cipher or BackupCipher()
        self.sanitizer = sanitizer or LicenseSanitizer()
        self.integrity = integrity or IntegrityChecker()
        self.temp_dir = Path(temp_dir) if temp_dir else None

    def perform_backup(self, password: Optional[str] = None, mode: str = "both") -> BackupResult:
        """
        Run one backup.

        Args:
            password: Encrypt the artifact with this passphrase
            mode: 'local', 'cloud' or 'both'

        Returns:
            BackupResult; failures are reported, never raised
        """
        if mode not in BACKUP_MODES:
            return BackupResult.failure(f"Invalid backup mode: {mode!r}", code="INVALID_MODE")

        started = datetime.now(timezone.utc)
        stamp = started.strftime("%Y%m%d_%H%M%S_%f")
        if self.temp_dir is not None:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="dentalflow_backup_", dir=self.temp_dir))

        try:
            snapshot = work_dir / f"{BACKUP_PREFIX}{stamp}.db"
            self.connection.backup_to(snapshot)
            self.sanitizer.sanitize(snapshot)

            if not self.integrity.verify(snapshot):
                raise CorruptedFileError("Snapshot failed the integrity check")

            artifact = snapshot
            encrypted = False
            if password:
                artifact = work_dir / f"{snapshot.name}.enc"
                self.cipher.encrypt_backup(snapshot, artifact, password)
                snapshot.unlink()
                encrypted = True

            result = BackupResult(success=True, timestamp=started.isoformat(), encrypted=encrypted)
            if mode in ("cloud", "both"):
                result.cloud = self._upload(artifact, encrypted)
            if mode in ("local", "both"):
                result.local_path = self._mirror_local(artifact)
                result.local = result.local_path is not None

            self.settings.record_backup(started)
            logger.info(
                f"Backup finished (cloud={result.cloud}, local={result.local}, encrypted={encrypted})"
            )
            return result

        except DentalFlowError as e:
            logger.error(f"Backup failed: {e.message}")
            return BackupResult.failure(e.message, code=e.code)
        except Exception as e:
            logger.exception(f"Backup failed: {e}")
            return BackupResult.failure(str(e))
        finally:
            self._remove_work_dir(work_dir)

    def _upload(self, artifact: Path, encrypted: bool) -> bool:
        if self.remote is None:
            logger.warning("Cloud backup requested but no remote store is configured")
            return False
        if not self.remote.is_authenticated():
            logger.warning("Cloud backup skipped: remote store is not authenticated")
            return False

        self.remote.upload_file(
            artifact,
            CLOUD_FILENAME,
            ENCRYPTED_MIME_TYPE if encrypted else PLAIN_MIME_TYPE,
            json.dumps({"encrypted": encrypted}),
        )
        return True

    def _mirror_local(self, artifact: Path) -> Optional[Path]:
        folder = self.settings.local_backup_path
        if folder is None:
            logger.warning("Local backup requested but backup.local_path is not set")
            return None
        if not folder.is_dir():
            logger.warning(f"Local backup folder does not exist: {folder}")
            return None

        dest = folder / artifact.name
        shutil.copy2(artifact, dest)
        logger.info(f"Local backup written to {dest}")
        self.prune_local_backups(folder)
        return dest

    def _remove_work_dir(self, work_dir: Path) -> None:
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary backup files in {work_dir}: {e}")

    # ==================== Local folder ====================

    def list_local_backups(self, folder: Optional[Path] = None) -> List[LocalBackupInfo]:
        """Backups in the local folder, newest first."""
        folder = Path(folder) if folder else self.settings.local_backup_path
        if folder is None or not folder.is_dir():
            return []

        backups = []
        for path in folder.iterdir():
            if not path.is_file() or not is_backup_filename(path.name):
                continue
            stat = path.stat()
            backups.append(LocalBackupInfo(
                path=path,
                size_bytes=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                encrypted=path.name.endswith(".enc"),
            ))
        backups.sort(key=lambda b: (b.modified_at, b.path.name), reverse=True)
        return backups

    def prune_local_backups(self, folder: Optional[Path] = None, keep: Optional[int] = None) -> int:
        """
        Keep only the ``keep`` most recently modified backups.

        Returns:
            Number of files deleted
        """
        if keep is None:
            keep = self.settings.retention_count
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")

        deleted = 0
        for info in self.list_local_backups(folder)[keep:]:
            try:
                info.path.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Could not delete old backup {info.path}: {e}")
        if deleted:
            logger.info(f"Pruned {deleted} old local backup(s)")
        return deleted

    # ==================== Cloud folder ====================

    def prune_cloud_backups(self, keep: int = 10, scan_limit: int = 50) -> int:
        """
        Delete timestamped remote backups beyond the newest ``keep``.

        Uploads always go to the fixed cloud name, which is never touched.
        This cleans up ``dental_backup_*`` copies that earlier releases
        uploaded or that were copied into the folder by hand.
        """
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")
        if self.remote is None or not self.remote.is_authenticated():
            return 0

        files = [f for f in self.remote.list_files(scan_limit) if f.name.startswith(BACKUP_PREFIX)]
        deleted = 0
        for remote_file in files[keep:]:
            if self.remote.delete_file(remote_file.id):
                deleted += 1
        return deleted

    # ==================== Schedule ====================

    def is_backup_due(self, now: Optional[datetime] = None) -> bool:
        days = BACKUP_FREQUENCIES[self.settings.backup_frequency]
        if days is None:
            return False
        last = self.settings.last_backup_at
        if last is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - last >= timedelta(days=days)

    def check_and_run_scheduled_backup(self, now: Optional[datetime] = None) -> Optional[BackupResult]:
        """
        Run a backup if the configured interval has elapsed.

        Returns:
            The backup result, or None when no backup was due
        """
        if not self.is_backup_due(now):
            return None
        logger.info(f"Scheduled {self.settings.backup_frequency} backup is due")
        return self.perform_backup(mode=self.settings.backup_mode)
