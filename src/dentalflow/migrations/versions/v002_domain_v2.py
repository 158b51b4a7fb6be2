"""
Migration v002: Domain v2 tables

Reshapes the core tables for multi-clinic readiness: every row gets a
``clinic_id`` and an ``is_deleted`` soft-delete flag, and patients trade
their ``age`` column for an estimated ``birth_date``. The old tables are
kept as ``<name>_legacy``.
"""

import sqlite3
from typing import List

from dentalflow.migrations.migration_base import (
    MigrationBase,
    ShadowSwap,
    apply_shadow_swaps,
    column_exists,
    table_exists,
)

CLINIC_ID = "clinic_001"

# Columns shared by every v2 table
_AUDIT = """
        clinic_id TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        is_deleted BOOLEAN DEFAULT 0"""


def _copy(columns: str, selected: str = None) -> str:
    return (
        f"INSERT INTO {{shadow}} ({columns}, clinic_id) "
        f"SELECT {selected or columns}, '{CLINIC_ID}' FROM {{source}}"
    )


class Migration(MigrationBase):
    version = 2
    description = "Domain v2 tables with clinic_id and soft delete"

    def _birth_date_sql(self, conn: sqlite3.Connection) -> str:
        estimate = (
            "CASE WHEN age IS NOT NULL "
            "THEN strftime('%Y-%m-%d', 'now', '-' || age || ' years') ELSE NULL END"
        )
        if table_exists(conn, "patients") and column_exists(conn, "patients", "dob"):
            return f"COALESCE(dob, {estimate})"
        return estimate

    def shadow_swaps(self, conn: sqlite3.Connection) -> List[ShadowSwap]:
        return [
            ShadowSwap(
                "cities",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,{_AUDIT}
    )""",
                _copy("id, name, created_at"),
            ),
            ShadowSwap(
                "doctors",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'doctor',
        active INTEGER NOT NULL DEFAULT 1,
        commission_type TEXT DEFAULT 'percentage',
        commission_value REAL DEFAULT 0,{_AUDIT}
    )""",
                _copy("id, user_id, name, role, active, commission_type, commission_value, "
                      "created_at, updated_at"),
            ),
            ShadowSwap(
                "services",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        time_hours REAL NOT NULL DEFAULT 1,
        profit_percent REAL NOT NULL DEFAULT 30,
        default_price REAL NOT NULL DEFAULT 0,{_AUDIT}
    )""",
                _copy("id, name, time_hours, profit_percent, default_price, created_at, updated_at"),
            ),
            ShadowSwap(
                "accounts",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'expense',
        amount REAL NOT NULL DEFAULT 0,
        category TEXT,
        description TEXT,
        date TEXT NOT NULL DEFAULT CURRENT_DATE,{_AUDIT}
    )""",
                _copy("id, name, type, amount, category, description, date, created_at"),
            ),
            ShadowSwap(
                "staff",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'assistant',
        phone TEXT,{_AUDIT}
    )""",
                _copy("id, name, role, phone, created_at, updated_at"),
            ),
            ShadowSwap(
                "patients",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        display_id INTEGER,
        full_name TEXT NOT NULL,
        phone TEXT NOT NULL,
        gender TEXT,
        birth_date TEXT,
        city_id TEXT,
        notes TEXT,
        medical_history TEXT,{_AUDIT},
        FOREIGN KEY (city_id) REFERENCES cities_v2(id)
    )""",
                _copy(
                    "id, display_id, full_name, phone, gender, birth_date, city_id, notes, "
                    "medical_history, created_at, updated_at",
                    "id, display_id, full_name, phone, gender, "
                    f"{self._birth_date_sql(conn)}, city_id, notes, "
                    "medical_history, created_at, updated_at",
                ),
            ),
            ShadowSwap(
                "treatment_cases",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        display_id INTEGER,
        patient_id TEXT,
        patient_name TEXT,
        name TEXT,
        total_cost REAL,
        total_paid REAL,
        balance REAL,
        status TEXT,{_AUDIT},
        FOREIGN KEY (patient_id) REFERENCES patients_v2(id)
    )""",
                _copy("id, display_id, patient_id, patient_name, name, total_cost, total_paid, "
                      "balance, status, created_at, updated_at"),
            ),
            ShadowSwap(
                "appointments",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        patient_id TEXT NOT NULL,
        doctor_id TEXT,
        service_id TEXT,
        treatment_case_id TEXT,
        invoice_id TEXT,
        date TEXT NOT NULL,
        time TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'scheduled',
        notes TEXT,{_AUDIT},
        FOREIGN KEY (patient_id) REFERENCES patients_v2(id) ON DELETE CASCADE,
        FOREIGN KEY (doctor_id) REFERENCES doctors_v2(id),
        FOREIGN KEY (service_id) REFERENCES services_v2(id),
        FOREIGN KEY (treatment_case_id) REFERENCES treatment_cases_v2(id)
    )""",
                _copy("id, patient_id, doctor_id, service_id, treatment_case_id, invoice_id, "
                      "date, time, status, notes, created_at, updated_at"),
            ),
            ShadowSwap(
                "invoices",
                f"""CREATE TABLE {{name}} (
        id TEXT PRIMARY KEY,
        display_id INTEGER,
        appointment_id TEXT,
        patient_id TEXT NOT NULL,
        doctor_id TEXT,
        service_id TEXT,
        treatment_case_id TEXT,
        amount REAL NOT NULL DEFAULT 0,
        paid_amount REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending',
        notes TEXT,{_AUDIT},
        FOREIGN KEY (appointment_id) REFERENCES appointments_v2(id) ON DELETE SET NULL,
        FOREIGN KEY (patient_id) REFERENCES patients_v2(id) ON DELETE CASCADE,
        FOREIGN KEY (doctor_id) REFERENCES doctors_v2(id),
        FOREIGN KEY (service_id) REFERENCES services_v2(id),
        FOREIGN KEY (treatment_case_id) REFERENCES treatment_cases_v2(id)
    )""",
                _copy("id, display_id, appointment_id, patient_id, doctor_id, service_id, "
                      "treatment_case_id, amount, paid_amount, status, notes, created_at, updated_at"),
            ),
        ]

    def up(self, conn: sqlite3.Connection) -> None:
        apply_shadow_swaps(conn, self.shadow_swaps(conn))
