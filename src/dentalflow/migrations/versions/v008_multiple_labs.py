"""
Migration v008: Multiple labs

Introduces the labs table with a default "Future Lab", links lab
services and orders to a lab (backfilling existing rows to the default)
and rebuilds the overview view with the lab name.
"""

import logging
import sqlite3
import uuid

from dentalflow.migrations.migration_base import MigrationBase, add_column

logger = logging.getLogger(__name__)


class Migration(MigrationBase):
    version = 8
    description = "Add labs table and lab_id on lab services and orders"

    def _default_lab_id(self, conn: sqlite3.Connection) -> str:
        row = conn.execute("SELECT id FROM labs WHERE is_default = 1").fetchone()
        if row:
            return row[0]
        lab_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO labs (id, name, is_default) VALUES (?, 'Future Lab', 1)", (lab_id,)
        )
        return lab_id

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS labs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                is_default INTEGER DEFAULT 0,
                clinic_id TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)
        default_lab_id = self._default_lab_id(conn)

        for table in ("lab_services", "lab_orders"):
            if add_column(conn, table, "lab_id", "TEXT REFERENCES labs(id) ON DELETE SET NULL"):
                cursor = conn.execute(
                    f"UPDATE {table} SET lab_id = ? WHERE lab_id IS NULL", (default_lab_id,)
                )
                logger.info(f"Backfilled {cursor.rowcount} {table} rows with the default lab")

        conn.execute("DROP VIEW IF EXISTS lab_orders_overview")
        conn.execute("""
            CREATE VIEW lab_orders_overview AS
            SELECT
                lo.id AS order_id,
                lo.patient_id,
                p.full_name AS patient_name,
                lo.doctor_id,
                d.name AS doctor_name,
                lo.lab_service_id,
                ls.name AS service_name,
                lo.lab_id,
                l.name AS lab_name,
                lo.clinic_id,
                lo.sent_date,
                lo.expected_receive_date,
                lo.received_date,
                lo.order_status,
                lo.total_lab_cost,
                COALESCE(SUM(lp.paid_amount), 0) AS total_paid,
                (lo.total_lab_cost - COALESCE(SUM(lp.paid_amount), 0)) AS remaining_balance,
                lo.created_at
            FROM lab_orders lo
            LEFT JOIN patients p ON lo.patient_id = p.id
            LEFT JOIN doctors d ON lo.doctor_id = d.id
            LEFT JOIN lab_services ls ON lo.lab_service_id = ls.id
            LEFT JOIN labs l ON lo.lab_id = l.id
            LEFT JOIN lab_payments lp ON lo.id = lp.lab_order_id
            GROUP BY lo.id
        """)
