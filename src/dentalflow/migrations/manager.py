"""
Migration history.

The authoritative schema version is ``last_migration_version`` in
``app_meta``. The ``_migrations`` table is an audit trail written in the
same transaction as each migration, recording when it ran and how long
it took.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class MigrationRecord:
    """A stored migration record."""
    version: int
    description: str
    applied_at: Optional[datetime]
    duration_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "description": self.description,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata or {},
        }


class MigrationHistory:
    """Reads and writes the ``_migrations`` audit table on a given connection."""

    TABLE_SQL = (
        """
        CREATE TABLE IF NOT EXISTS _migrations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            version INTEGER NOT NULL UNIQUE,
            description TEXT NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            duration_ms INTEGER,
            metadata TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_migrations_version ON _migrations(version)",
    )

    def ensure_table(self, conn: sqlite3.Connection) -> None:
        for statement in self.TABLE_SQL:
            conn.execute(statement)

    def record(self,
               conn: sqlite3.Connection,
               version: int,
               description: str,
               duration_ms: Optional[int] = None,
               metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Record an applied migration.

        A re-applied version replaces its earlier record.
        """
        self.ensure_table(conn)
        conn.execute(
            """
            INSERT OR REPLACE INTO _migrations (version, description, applied_at, duration_ms, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                version,
                description,
                datetime.now(timezone.utc).isoformat(),
                duration_ms,
                json.dumps(metadata) if metadata else None,
            ),
        )

    def get_applied(self, conn: sqlite3.Connection) -> List[MigrationRecord]:
        """All recorded migrations ordered by version."""
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='_migrations'"
        ).fetchone()
        if row is None:
            return []

        records = []
        cursor = conn.execute(
            """
            SELECT version, description, applied_at, duration_ms, metadata
            FROM _migrations ORDER BY version ASC
            """
        )
        for version, description, applied_at, duration_ms, metadata in cursor:
            records.append(MigrationRecord(
                version=version,
                description=description,
                applied_at=datetime.fromisoformat(applied_at) if applied_at else None,
                duration_ms=duration_ms,
                metadata=json.loads(metadata) if metadata else None,
            ))
        return records
