"""
License sanitization

A clinic's license and activation data belong to the machine, not to the
data. Snapshots are stripped of it before they leave the machine, and a
restore puts the current machine's license back after the swap.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping

from .errors import LicenseRestoreError, SanitizeError
from .meta import LICENSE_KEYS, MetaStore

logger = logging.getLogger(__name__)

# Removed in addition to every license_* and device_* key
SANITIZED_KEYS = ("support_unlock_until", "last_license_check_at", "activation_token")


@dataclass(frozen=True)
class LicenseSnapshot:
    """License metadata captured from the live database, held in memory only."""
    fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def is_empty(self) -> bool:
        return not self.fields

    def keys(self):
        return self.fields.keys()

    def __repr__(self) -> str:
        # Values are secrets; show key names only
        return f"<LicenseSnapshot keys={sorted(self.fields)}>"


class LicenseSanitizer:
    """Removes and reinstates machine-bound license data"""

    def sanitize(self, db_path: Path) -> Dict[str, int]:
        """
        Strip license data from a database file in one transaction.

        Returns:
            Counts of removed license rows and metadata keys

        Raises:
            SanitizeError: If the file cannot be opened or updated
        """
        conn = None
        try:
            conn = sqlite3.connect(Path(db_path), isolation_level=None)
            conn.execute("BEGIN")
            try:
                removed_licenses = 0
                if self._table_exists(conn, "licenses"):
                    removed_licenses = conn.execute("DELETE FROM licenses").rowcount

                removed_keys = 0
                if self._table_exists(conn, "app_meta"):
                    placeholders = ",".join("?" for _ in SANITIZED_KEYS)
                    removed_keys = conn.execute(
                        "DELETE FROM app_meta WHERE key LIKE 'license\\_%' ESCAPE '\\' "
                        "OR key LIKE 'device\\_%' ESCAPE '\\' "
                        f"OR key IN ({placeholders})",
                        SANITIZED_KEYS,
                    ).rowcount
                conn.execute("COMMIT")
            except sqlite3.Error:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as e:
            logger.error(f"Failed to sanitize {db_path}: {e}")
            raise SanitizeError(f"Failed to sanitize backup: {e}") from e
        finally:
            if conn is not None:
                conn.close()

        logger.debug(
            f"Sanitized {db_path}: {removed_licenses} license rows, {removed_keys} metadata keys"
        )
        return {"licenses": removed_licenses, "meta_keys": removed_keys}

    @staticmethod
    def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
        return conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone() is not None

    def capture_license(self, meta: MetaStore) -> LicenseSnapshot:
        """Read the current machine's license keys. Missing keys are left out."""
        snapshot = LicenseSnapshot(meta.get_many(LICENSE_KEYS))
        logger.debug(f"Captured {snapshot!r}")
        return snapshot

    def read_license_file(self, db_path: Path) -> LicenseSnapshot:
        """
        Read license keys from a database file without opening it for writing.

        The file's journal mode and contents are left as they are.

        Raises:
            SanitizeError: If the file cannot be read
        """
        conn = None
        try:
            conn = sqlite3.connect(f"{Path(db_path).resolve().as_uri()}?mode=ro", uri=True)
            if not self._table_exists(conn, "app_meta"):
                return LicenseSnapshot()
            placeholders = ",".join("?" for _ in LICENSE_KEYS)
            rows = conn.execute(
                f"SELECT key, value FROM app_meta WHERE key IN ({placeholders})",
                LICENSE_KEYS,
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to read license keys from {db_path}: {e}")
            raise SanitizeError(f"Failed to read license data: {e}") from e
        finally:
            if conn is not None:
                conn.close()

        snapshot = LicenseSnapshot({key: value for key, value in rows if value is not None})
        logger.debug(f"Captured {snapshot!r} from {db_path}")
        return snapshot

    def restore_license(self, meta: MetaStore, snapshot: LicenseSnapshot) -> None:
        """
        Write a captured snapshot back into the metadata store.

        Raises:
            LicenseRestoreError: If the write fails
        """
        if snapshot.is_empty:
            return
        try:
            meta.set_many(dict(snapshot.fields))
        except Exception as e:
            raise LicenseRestoreError(f"License restore failed: {e}") from e
        logger.info(f"Reinstated {len(snapshot.fields)} license keys")
