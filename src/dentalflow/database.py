"""
Schema Store connection management.

The clinic database is a single SQLite file with WAL journaling and
foreign keys enforced. ``ConnectionManager`` owns the only writable
connection to it: the migration runner, the engines and the repositories
all go through one instance instead of sharing a module-level handle.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import DatabaseNotOpenError

logger = logging.getLogger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"


def sidecar_paths(db_path: Path):
    """Return the WAL and shared-memory files that belong to a database file."""
    db_path = Path(db_path)
    return (
        db_path.with_name(db_path.name + "-wal"),
        db_path.with_name(db_path.name + "-shm"),
    )


def remove_sidecars(db_path: Path) -> None:
    """Delete stale -wal/-shm files so a freshly copied file opens clean."""
    for path in sidecar_paths(db_path):
        if path.exists():
            path.unlink()


class ConnectionManager:
    """
    Owns the lifecycle of the Schema Store connection.

    Pattern: explicit open/close, typed error when the handle is missing
    Lifetime: one instance per database file for the whole process

    Example:
        db = ConnectionManager(data_dir / "clinic.db")
        db.open()
        with db.transaction() as conn:
            conn.execute("UPDATE patients SET notes = ? WHERE id = ?", (notes, pid))
        db.close()
    """

    def __init__(self, db_path: Path, enable_wal: bool = True, timeout: float = 30.0):
        """
        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable WAL mode (default: True)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self._enable_wal = enable_wal
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        """Open the connection if needed and return it."""
        with self._lock:
            if self._conn is not None:
                return self._conn

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None: transactions are explicit BEGIN/COMMIT
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=self._timeout,
            )
            conn.row_factory = sqlite3.Row
            if self._enable_wal:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._conn = conn
            logger.debug(f"Opened database {self.db_path}")
            return conn

    def close(self) -> None:
        """Close the connection. Safe to call when already closed."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            finally:
                self._conn = None
            logger.debug(f"Closed database {self.db_path}")

    def get(self) -> sqlite3.Connection:
        """
        Return the open connection.

        Raises:
            DatabaseNotOpenError: If open() has not been called
        """
        if self._conn is None:
            raise DatabaseNotOpenError(f"Database not open: {self.db_path}")
        return self._conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the open connection while holding the manager lock."""
        with self._lock:
            yield self.get()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside BEGIN/COMMIT.

        Any exception rolls the transaction back and is re-raised.
        """
        with self._lock:
            conn = self.get()
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def checkpoint(self) -> None:
        """Fold the WAL back into the main database file."""
        with self.connection() as conn:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def backup_to(self, dest: Path) -> Path:
        """
        Write a transactionally consistent copy of the database to ``dest``.

        Uses the SQLite online backup API, so readers and writers are not
        blocked. The copy is switched to rollback journaling so it is a
        single self-contained file.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            own_source = self._conn is None
            if own_source:
                if not self.db_path.exists():
                    raise FileNotFoundError(f"Database file not found: {self.db_path}")
                source = sqlite3.connect(self.db_path, timeout=self._timeout)
            else:
                source = self._conn

            dest_conn = sqlite3.connect(dest)
            try:
                source.backup(dest_conn)
                dest_conn.execute("PRAGMA journal_mode=DELETE")
            finally:
                dest_conn.close()
                if own_source:
                    source.close()

        logger.debug(f"Hot backup of {self.db_path} written to {dest}")
        return dest

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<ConnectionManager {self.db_path} ({state})>"
