"""Migration v005: App metadata defaults"""

import sqlite3

from dentalflow.migrations.migration_base import MigrationBase

DEFAULTS = (
    ("license_status", "trial"),
    ("app_version", "1.0.1"),
)


class Migration(MigrationBase):
    version = 5
    description = "Seed default app_meta keys"

    def up(self, conn: sqlite3.Connection) -> None:
        conn.executemany(
            "INSERT OR IGNORE INTO app_meta (key, value) VALUES (?, ?)", DEFAULTS
        )
