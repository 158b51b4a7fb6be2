"""
Migration Base Class

Abstract base class for Schema Store migrations. Migrations are
forward-only: each one implements up(), runs at most once, and is
applied in version order inside a single transaction.

Destructive reshapes (dropping a column, changing a type) are declared
as ShadowSwap steps instead of inline rename sequences:

    <table>_v2 is created with the new shape and filled from <table>,
    then <table> becomes <table>_legacy and <table>_v2 becomes <table>.

Legacy tables are kept for manual recovery.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List

logger = logging.getLogger(__name__)


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cursor.fetchall())


def add_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    """Add a column unless it already exists. Returns True if it was added."""
    if column_exists(conn, table, column):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    return True


def execute_all(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    """
    Run statements one at a time.

    executescript() would commit the enclosing transaction, so migrations
    use this instead.
    """
    for statement in statements:
        conn.execute(statement)


@dataclass(frozen=True)
class ShadowSwap:
    """
    One shadow-and-swap step.

    Attributes:
        table: Name of the table being reshaped
        create_sql: CREATE TABLE statement with a ``{name}`` placeholder
        copy_sql: INSERT ... SELECT statement with ``{shadow}`` and
                  ``{source}`` placeholders
    """
    table: str
    create_sql: str
    copy_sql: str

    @property
    def shadow(self) -> str:
        return f"{self.table}_v2"

    @property
    def legacy(self) -> str:
        return f"{self.table}_legacy"


def apply_shadow_swaps(conn: sqlite3.Connection, steps: List[ShadowSwap]) -> List[str]:
    """
    Apply shadow-and-swap steps as a group.

    All shadows are created before any data is copied and before any
    rename, so shadow tables may reference each other by their ``_v2``
    names; SQLite rewrites those references when the shadows are renamed.
    The caller must have foreign key enforcement switched off.

    Steps whose legacy table already exists are treated as done. A step
    whose source table is missing installs an empty shadow.

    Returns:
        Names of the tables that were swapped
    """
    pending = [step for step in steps if not table_exists(conn, step.legacy)]
    for step in steps:
        if step not in pending:
            logger.debug(f"Skipping {step.table}: {step.legacy} already exists")

    for step in pending:
        conn.execute(f"DROP TABLE IF EXISTS {step.shadow}")
    for step in pending:
        conn.execute(step.create_sql.format(name=step.shadow))
    for step in pending:
        if table_exists(conn, step.table):
            conn.execute(step.copy_sql.format(shadow=step.shadow, source=step.table))

    # Retiring a table must not drag other tables' foreign keys along to
    # <table>_legacy; they keep pointing at the active name.
    conn.execute("PRAGMA legacy_alter_table=ON")
    try:
        for step in pending:
            if table_exists(conn, step.table):
                conn.execute(f"ALTER TABLE {step.table} RENAME TO {step.legacy}")
    finally:
        conn.execute("PRAGMA legacy_alter_table=OFF")

    swapped = []
    for step in pending:
        conn.execute(f"ALTER TABLE {step.shadow} RENAME TO {step.table}")
        swapped.append(step.table)
    return swapped


class MigrationBase(ABC):
    """
    Abstract base class for database migrations.

    All migrations must inherit from this class and implement:
    - version: Unique integer version number (e.g., 1, 2, 3)
    - description: Human-readable description of the migration
    - up(): Method to apply the migration

    Migrations that reshape tables declare their steps in
    ``shadow_swaps()`` and pass them to apply_shadow_swaps() from up().

    Example:
        class Migration(MigrationBase):
            version = 6
            description = "Add expenses table"

            def up(self, conn: sqlite3.Connection) -> None:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS expenses (
                        id TEXT PRIMARY KEY,
                        amount REAL NOT NULL
                    )
                ''')
    """

    # Subclasses must define these
    version: int
    description: str

    def __init__(self):
        """Initialize migration and validate required attributes."""
        if not hasattr(self, 'version') or not isinstance(self.version, int):
            raise ValueError(
                f"{self.__class__.__name__} must define 'version' as an integer"
            )
        if not hasattr(self, 'description') or not isinstance(self.description, str):
            raise ValueError(
                f"{self.__class__.__name__} must define 'description' as a string"
            )
        if self.version < 1:
            raise ValueError(
                f"Migration version must be >= 1, got {self.version}"
            )

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        """
        Apply the migration forward.

        Args:
            conn: SQLite connection inside an open transaction.
                  The runner handles COMMIT/ROLLBACK.

        Raises:
            Exception: If migration fails. The transaction is rolled back.
        """

    def shadow_swaps(self, conn: sqlite3.Connection) -> List[ShadowSwap]:
        """Shadow-and-swap steps performed by this migration."""
        return []

    def validate(self, conn: sqlite3.Connection) -> None:
        """
        Optional validation before migration runs.

        Raises:
            Exception: If validation fails, migration will not run.
        """

    def __repr__(self) -> str:
        return f"<Migration v{self.version}: {self.description}>"

    def __eq__(self, other) -> bool:
        if not isinstance(other, MigrationBase):
            return False
        return self.version == other.version

    def __lt__(self, other) -> bool:
        if not isinstance(other, MigrationBase):
            return NotImplemented
        return self.version < other.version

    def __hash__(self) -> int:
        return hash(self.version)
