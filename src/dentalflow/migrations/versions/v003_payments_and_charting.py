"""
Migration v003: Payments and dental charting

Adds per-invoice partial payments and per-tooth condition history.
"""

import sqlite3

from dentalflow.migrations.migration_base import MigrationBase, execute_all


class Migration(MigrationBase):
    version = 3
    description = "Add payments and tooth_conditions tables"

    def up(self, conn: sqlite3.Connection) -> None:
        execute_all(conn, [
            """
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                clinic_id TEXT NOT NULL,
                invoice_id TEXT NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                method TEXT NOT NULL DEFAULT 'cash',
                date DATETIME DEFAULT CURRENT_TIMESTAMP,
                notes TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                is_deleted BOOLEAN DEFAULT 0,
                FOREIGN KEY (invoice_id) REFERENCES invoices(id) ON DELETE CASCADE
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS tooth_conditions (
                id TEXT PRIMARY KEY,
                clinic_id TEXT NOT NULL,
                patient_id TEXT NOT NULL,
                tooth_number INTEGER NOT NULL,  -- FDI notation
                surface TEXT,
                condition TEXT NOT NULL,
                notes TEXT,
                date DATETIME DEFAULT CURRENT_TIMESTAMP,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                is_deleted BOOLEAN DEFAULT 0,
                FOREIGN KEY (patient_id) REFERENCES patients(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_payments_invoice ON payments(invoice_id)",
            "CREATE INDEX IF NOT EXISTS idx_payments_date ON payments(date)",
            "CREATE INDEX IF NOT EXISTS idx_payments_clinic ON payments(clinic_id)",
            "CREATE INDEX IF NOT EXISTS idx_tooth_patient ON tooth_conditions(patient_id)",
            "CREATE INDEX IF NOT EXISTS idx_tooth_condition ON tooth_conditions(condition)",
        ])
