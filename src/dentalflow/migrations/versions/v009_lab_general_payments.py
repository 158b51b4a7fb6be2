"""
Migration v009: Lab general payments

Account-level payments to a lab, separate from the per-order
``lab_payments``.
"""

import sqlite3

from dentalflow.migrations.migration_base import MigrationBase, execute_all


class Migration(MigrationBase):
    version = 9
    description = "Add lab_general_payments table"

    def up(self, conn: sqlite3.Connection) -> None:
        execute_all(conn, [
            """
            CREATE TABLE IF NOT EXISTS lab_general_payments (
                id TEXT PRIMARY KEY,
                lab_id TEXT NOT NULL,
                amount REAL NOT NULL,
                expense_id TEXT,
                notes TEXT,
                payment_date TEXT NOT NULL,
                clinic_id TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (lab_id) REFERENCES labs(id) ON DELETE CASCADE,
                FOREIGN KEY (expense_id) REFERENCES expenses(id) ON DELETE SET NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_lab_general_payments_lab_id ON lab_general_payments(lab_id)",
            "CREATE INDEX IF NOT EXISTS idx_lab_general_payments_date ON lab_general_payments(payment_date)",
        ])
