"""
Restore Engine

locate -> classify -> (decrypt) -> verify -> ownership -> capture license
-> recovery copy -> close + overwrite -> sanitize -> reopen -> reinstate
license

Nothing live is touched until the candidate has passed decryption, the
integrity check and the ownership check. Once a recovery copy exists,
any failure copies it back over the live file before the error is
reported.
"""

import logging
import os
import shutil
import sqlite3
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from .backup import CLOUD_FILENAME
from .crypto import BackupCipher
from .database import ConnectionManager, remove_sidecars
from .errors import (
    BackupNotFoundError,
    ConfirmationRequiredError,
    CorruptedFileError,
    DentalFlowError,
    OwnershipMismatchError,
    PasswordRequiredError,
)
from .integrity import IntegrityChecker
from .license import LicenseSanitizer, LicenseSnapshot
from .meta import MetaStore
from .results import RestoreResult, RestoreState
from .storage_backends import RemoteStore, StorageAuthError

logger = logging.getLogger(__name__)

RECOVERY_FILENAME = "auto_recovery.db"

# Where a backup records the account it belongs to, in lookup order
IDENTITY_QUERIES = (
    "SELECT email FROM clinic_settings LIMIT 1",
    "SELECT email FROM clinics ORDER BY created_at LIMIT 1",
)


def mask_identity(email: str) -> str:
    """j***n@example.com"""
    local, _, domain = email.strip().partition("@")
    if len(local) <= 2:
        masked = f"{local[:1]}***"
    else:
        masked = f"{local[0]}***{local[-1]}"
    return f"{masked}@{domain}" if domain else masked


def _replace_file(source: Path, target: Path) -> None:
    """Copy ``source`` next to ``target`` and atomically move it into place."""
    staging = target.with_name(target.name + ".restore-tmp")
    shutil.copyfile(source, staging)
    os.replace(staging, target)


class _RestoreRun:
    """Mutable progress of one restore invocation."""

    def __init__(self):
        self.state = RestoreState.IDLE
        self.recovery_path: Optional[Path] = None
        self.identity: Optional[str] = None

    def advance(self, state: RestoreState) -> None:
        logger.debug(f"Restore: {self.state.value} -> {state.value}")
        self.state = state


class RestoreEngine:
    """
    Restores the clinic database from a cloud or local backup.

    Example:
        engine = RestoreEngine(db, remote=store)
        result = engine.restore_from_local_file(path, password="correct-horse",
                                                verify_email="owner@clinic.example")
        if result.code == "CONFIRMATION_REQUIRED":
            ...ask the user, then call again with force=True
    """

    def __init__(self,
                 connection: ConnectionManager,
                 remote: Optional[RemoteStore] = None,
                 cipher: Optional[BackupCipher] = None,
                 sanitizer: Optional[LicenseSanitizer] = None,
                 integrity: Optional[IntegrityChecker] = None,
                 temp_dir: Optional[Path] = None,
                 release_delay: float = 0.5):
        """
        Args:
            connection: Manager of the live database connection
            remote: Remote store for cloud restores
            temp_dir: Parent for temporary download/decrypt files
            release_delay: Seconds to wait after closing the live
                           connection before overwriting the file
        """
        self.connection = connection
        self.remote = remote
        self.cipher = cipher or BackupCipher()
        self.sanitizer = sanitizer or LicenseSanitizer()
        self.integrity = integrity or IntegrityChecker()
        self.temp_dir = Path(temp_dir) if temp_dir else None
        self.release_delay = release_delay

    # ==================== Entry points ====================

    def restore_from_cloud(self,
                           file_id: Optional[str] = None,
                           password: Optional[str] = None,
                           target_db_path: Optional[Path] = None,
                           verify_email: Optional[str] = None,
                           force: bool = False) -> RestoreResult:
        """Restore from the remote backup folder (the fixed-name backup by default)."""

        def locate(work_dir: Path, run: _RestoreRun) -> Path:
            if self.remote is None:
                raise BackupNotFoundError("No remote store is configured")
            if not self.remote.is_authenticated():
                raise StorageAuthError("Remote store is not authenticated")

            remote_file = (self.remote.get_file_metadata(file_id) if file_id
                           else self.remote.find_file(CLOUD_FILENAME))
            if remote_file is None:
                raise BackupNotFoundError("No backup found in the cloud")
            run.advance(RestoreState.LOCATED)

            # Decide before downloading when the upload said it was encrypted
            if remote_file.description_json.get("encrypted") and not password:
                raise PasswordRequiredError("This backup is encrypted; a password is required")

            try:
                return self.remote.download_file(remote_file.id, work_dir / "cloud_download.db")
            except KeyError as e:
                raise BackupNotFoundError(f"Cloud backup disappeared: {remote_file.id}") from e

        return self._restore(locate, password, target_db_path, verify_email, force)

    def restore_from_local_file(self,
                                file_path: Path,
                                password: Optional[str] = None,
                                target_db_path: Optional[Path] = None,
                                verify_email: Optional[str] = None,
                                force: bool = False) -> RestoreResult:
        """Restore from a backup file on disk."""

        def locate(work_dir: Path, run: _RestoreRun) -> Path:
            path = Path(file_path)
            if not path.is_file():
                raise BackupNotFoundError(f"Backup file not found: {path}")
            run.advance(RestoreState.LOCATED)
            return path

        return self._restore(locate, password, target_db_path, verify_email, force)

    # ==================== Ownership ====================

    def read_backup_identity(self, candidate: Path) -> Optional[str]:
        """Owner email recorded in a candidate database, if any."""
        conn = sqlite3.connect(f"{Path(candidate).resolve().as_uri()}?mode=ro", uri=True)
        try:
            for query in IDENTITY_QUERIES:
                try:
                    row = conn.execute(query).fetchone()
                except sqlite3.OperationalError:
                    # Table or column missing in older schemas
                    continue
                if row and row[0] and str(row[0]).strip():
                    return str(row[0]).strip()
            return None
        finally:
            conn.close()

    def verify_backup_ownership(self,
                                candidate: Path,
                                verify_email: Optional[str] = None,
                                force: bool = False) -> Optional[str]:
        """
        Check that a candidate belongs to the expected account.

        Backups without a recorded owner are open and always allowed.

        Returns:
            The candidate's masked identity, or None for open backups

        Raises:
            ConfirmationRequiredError: Owned backup, no expected identity, not forced
            OwnershipMismatchError: Different owner, not forced
        """
        try:
            identity = self.read_backup_identity(candidate)
        except sqlite3.Error as e:
            raise CorruptedFileError(f"Cannot read backup owner: {e}") from e

        if identity is None:
            logger.info("Backup has no recorded owner; restoring as an open backup")
            return None

        masked = mask_identity(identity)
        expected = (verify_email or "").strip().lower()

        if not expected:
            if force:
                logger.warning(f"[Security] Restoring backup owned by {masked} without confirmation (forced)")
                return masked
            raise ConfirmationRequiredError(
                f"Backup belongs to {masked}; confirm to restore it", identity=masked
            )

        if expected != identity.lower():
            if force:
                logger.warning(
                    f"[Security] Ownership override: restoring backup owned by {masked} "
                    f"for {mask_identity(expected)}"
                )
                return masked
            raise OwnershipMismatchError(f"Backup belongs to a different account ({masked})", identity=masked)

        return masked

    # ==================== Pipeline ====================

    def _restore(self,
                 locate: Callable[[Path, _RestoreRun], Path],
                 password: Optional[str],
                 target_db_path: Optional[Path],
                 verify_email: Optional[str],
                 force: bool) -> RestoreResult:
        run = _RestoreRun()
        target = Path(target_db_path) if target_db_path else self.connection.db_path
        same_file = target.resolve() == self.connection.db_path.resolve()
        live = self.connection if same_file else ConnectionManager(target)

        if self.temp_dir is not None:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="dentalflow_restore_", dir=self.temp_dir))

        try:
            try:
                artifact = locate(work_dir, run)
                candidate = self._prepare_candidate(artifact, password, work_dir, run)

                run.identity = self.verify_backup_ownership(candidate, verify_email, force)
                run.advance(RestoreState.OWNERSHIP_VERIFIED)

                snapshot = self._capture_license(live, target)
                run.recovery_path = self._create_recovery_copy(live, target)
                run.advance(RestoreState.RECOVERY_SNAPSHOTTED)

                self._overwrite(live, candidate, target)
                run.advance(RestoreState.OVERWRITTEN)

                sanitized = self.sanitizer.sanitize(target)
                run.advance(RestoreState.SANITIZED)

                live.open()
                run.advance(RestoreState.REOPENED)

                self.sanitizer.restore_license(MetaStore(live), snapshot)
                run.advance(RestoreState.LICENSE_RESTORED)
            except Exception as e:
                return self._fail(e, run, live, target)

            run.advance(RestoreState.DONE)
            logger.info(f"Database restored into {target}")
            return RestoreResult(
                success=True,
                state=run.state,
                identity=run.identity,
                details={
                    "sanitized": sanitized,
                    "recovery_path": str(run.recovery_path) if run.recovery_path else None,
                },
            )
        finally:
            self._remove_work_dir(work_dir)
            if live is not self.connection:
                live.close()

    def _prepare_candidate(self, artifact: Path, password: Optional[str],
                           work_dir: Path, run: _RestoreRun) -> Path:
        encrypted = self.cipher.is_encrypted_file(artifact)
        run.advance(RestoreState.CLASSIFIED)

        candidate = artifact
        if encrypted:
            if not password:
                raise PasswordRequiredError("This backup is encrypted; a password is required")
            candidate = work_dir / "candidate.db"
            self.cipher.decrypt_backup(artifact, candidate, password)
            run.advance(RestoreState.DECRYPTED)

        report = self.integrity.check(candidate)
        if not report.ok:
            raise CorruptedFileError(f"Backup failed the integrity check: {report.reason}")
        run.advance(RestoreState.INTEGRITY_VERIFIED)
        return candidate

    def _capture_license(self, live: ConnectionManager, target: Path) -> LicenseSnapshot:
        if live is not self.connection:
            # A separate target is only read; opening it would switch it to WAL
            if not target.exists():
                return LicenseSnapshot()
            return self.sanitizer.read_license_file(target)
        if not live.is_open and not target.exists():
            return LicenseSnapshot()
        live.open()
        return self.sanitizer.capture_license(MetaStore(live))

    def _create_recovery_copy(self, live: ConnectionManager, target: Path) -> Optional[Path]:
        """Copy the live file aside. Best effort: failures only shrink the safety net."""
        if not target.exists():
            return None
        recovery = target.parent / RECOVERY_FILENAME
        try:
            if live.is_open:
                live.checkpoint()
            shutil.copy2(target, recovery)
        except Exception as e:
            logger.warning(f"Could not create recovery copy {recovery}: {e}")
            return None
        logger.info(f"Recovery copy written to {recovery}")
        return recovery

    def _overwrite(self, live: ConnectionManager, candidate: Path, target: Path) -> None:
        live.close()
        if self.release_delay:
            time.sleep(self.release_delay)
        remove_sidecars(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        _replace_file(candidate, target)

    def _rollback(self, live: ConnectionManager, target: Path, recovery: Path) -> bool:
        try:
            live.close()
            remove_sidecars(target)
            _replace_file(recovery, target)
            live.open()
        except Exception as e:
            logger.critical(f"Rollback from {recovery} failed; restore it manually: {e}")
            return False
        logger.warning(f"Restore rolled back from {recovery}")
        return True

    def _fail(self, error: Exception, run: _RestoreRun,
              live: ConnectionManager, target: Path) -> RestoreResult:
        if isinstance(error, DentalFlowError):
            message, code = error.message, error.code
            logger.error(f"Restore failed at {run.state.value}: {message}")
        else:
            message, code = str(error), "RESTORE_FAILED"
            logger.exception(f"Restore failed at {run.state.value}: {error}")

        rolled_back = False
        if run.recovery_path is not None:
            rolled_back = self._rollback(live, target, run.recovery_path)
        elif run.state in (RestoreState.OVERWRITTEN, RestoreState.SANITIZED,
                           RestoreState.REOPENED, RestoreState.RECOVERY_SNAPSHOTTED):
            logger.critical("Restore failed after the live file was replaced and no recovery copy exists")

        return RestoreResult(
            success=False,
            state=RestoreState.ROLLED_BACK if rolled_back else RestoreState.FAILED,
            error=message,
            code=code,
            rolled_back=rolled_back,
            identity=getattr(error, "identity", None) or run.identity,
        )

    def _remove_work_dir(self, work_dir: Path) -> None:
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary restore files in {work_dir}: {e}")
