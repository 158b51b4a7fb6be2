"""
Integrity verification for database files

Pattern: SQLite header signature, then PRAGMA integrity_check on a
read-only handle. Used on every snapshot before it is encrypted or
distributed and on every candidate before it is restored.
"""

import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .database import SQLITE_HEADER

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    """Result of checking one database file"""
    path: Path
    ok: bool
    reason: Optional[str] = None


def hash_file(file_path: Path) -> str:
    """Generate SHA-256 hash of file contents"""
    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def has_sqlite_header(path: Path) -> bool:
    """True if the file starts with the SQLite signature. Unreadable files are not."""
    try:
        with open(path, "rb") as f:
            return f.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


class IntegrityChecker:
    """
    Integrity verification for database files

    Never writes to the file it checks, and always releases its
    connection before returning.
    """

    def check(self, path: Path) -> IntegrityReport:
        """Check a database file and say why it failed, if it did."""
        path = Path(path)
        if not path.is_file():
            return IntegrityReport(path, False, "file not found")
        if not has_sqlite_header(path):
            return IntegrityReport(path, False, "missing SQLite header")

        conn = None
        try:
            conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
            rows = conn.execute("PRAGMA integrity_check").fetchall()
        except sqlite3.Error as e:
            return IntegrityReport(path, False, f"cannot open database: {e}")
        finally:
            if conn is not None:
                conn.close()

        results = [row[0] for row in rows]
        if results != ["ok"]:
            return IntegrityReport(path, False, "; ".join(str(r) for r in results[:5]))
        return IntegrityReport(path, True)

    def verify(self, path: Path) -> bool:
        """True if ``path`` is a well-formed, consistent SQLite database."""
        report = self.check(path)
        if not report.ok:
            logger.warning(f"Integrity check failed for {report.path}: {report.reason}")
        return report.ok
