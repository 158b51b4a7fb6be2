"""
Migration v001: Baseline schema and clinics table

Creates the original single-clinic tables when they are missing (fresh
install) and introduces ``clinics``, seeded from ``clinic_settings`` as
clinic_001.
"""

import logging
import sqlite3

from dentalflow.migrations.migration_base import MigrationBase, execute_all

logger = logging.getLogger(__name__)

DEFAULT_CLINIC_ID = "clinic_001"

BASELINE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clinic_settings (
        id TEXT PRIMARY KEY,
        clinic_name TEXT NOT NULL DEFAULT '',
        clinic_logo TEXT,
        owner_name TEXT NOT NULL DEFAULT '',
        whatsapp_number TEXT,
        currency TEXT NOT NULL DEFAULT 'EGP',
        direction TEXT NOT NULL DEFAULT 'rtl',
        address TEXT,
        phone TEXT,
        email TEXT,
        is_setup_completed INTEGER DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cities (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS patients (
        id TEXT PRIMARY KEY,
        display_id INTEGER,
        full_name TEXT NOT NULL,
        phone TEXT NOT NULL,
        gender TEXT,
        age INTEGER,
        city_id TEXT,
        notes TEXT,
        clinic_id TEXT,
        medical_history TEXT,
        dob TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (city_id) REFERENCES cities(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS doctors (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'doctor',
        active INTEGER NOT NULL DEFAULT 1,
        commission_type TEXT DEFAULT 'percentage',
        commission_value REAL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS services (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        time_hours REAL NOT NULL DEFAULT 1,
        profit_percent REAL NOT NULL DEFAULT 30,
        default_price REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS treatment_cases (
        id TEXT PRIMARY KEY,
        display_id INTEGER,
        patient_id TEXT,
        patient_name TEXT,
        name TEXT,
        total_cost REAL,
        total_paid REAL,
        balance REAL,
        status TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (patient_id) REFERENCES patients(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS appointments (
        id TEXT PRIMARY KEY,
        patient_id TEXT NOT NULL,
        doctor_id TEXT,
        service_id TEXT,
        treatment_case_id TEXT,
        invoice_id TEXT,
        date TEXT NOT NULL,
        time TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'scheduled',
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (patient_id) REFERENCES patients(id) ON DELETE CASCADE,
        FOREIGN KEY (doctor_id) REFERENCES doctors(id),
        FOREIGN KEY (service_id) REFERENCES services(id),
        FOREIGN KEY (treatment_case_id) REFERENCES treatment_cases(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoices (
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
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (appointment_id) REFERENCES appointments(id) ON DELETE SET NULL,
        FOREIGN KEY (patient_id) REFERENCES patients(id) ON DELETE CASCADE,
        FOREIGN KEY (doctor_id) REFERENCES doctors(id),
        FOREIGN KEY (service_id) REFERENCES services(id),
        FOREIGN KEY (treatment_case_id) REFERENCES treatment_cases(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS staff (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'assistant',
        phone TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        id TEXT PRIMARY KEY,
        patient_id TEXT,
        file_name TEXT,
        file_url TEXT,
        file_type TEXT,
        notes TEXT,
        clinic_id TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (patient_id) REFERENCES patients(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'expense',
        amount REAL NOT NULL DEFAULT 0,
        category TEXT,
        description TEXT,
        date TEXT NOT NULL DEFAULT CURRENT_DATE,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


class Migration(MigrationBase):
    """
    Baseline tables plus the clinics table.

    Databases created by older releases already have the baseline tables;
    the CREATE IF NOT EXISTS statements leave them untouched.
    """

    version = 1
    description = "Baseline schema and clinics table"

    def up(self, conn: sqlite3.Connection) -> None:
        execute_all(conn, BASELINE_TABLES)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS clinics (
                id TEXT PRIMARY KEY,
                name TEXT,
                owner_name TEXT,
                phone TEXT,
                address TEXT,
                email TEXT,
                whatsapp_number TEXT,
                currency TEXT,
                direction TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        settings = conn.execute(
            "SELECT clinic_name, owner_name, phone, address, email, whatsapp_number, "
            "currency, direction, created_at FROM clinic_settings LIMIT 1"
        ).fetchone()
        if settings is None:
            logger.info("No clinic_settings row to copy into clinics")
            return

        conn.execute(
            """
            INSERT OR IGNORE INTO clinics (
                id, name, owner_name, phone, address, email,
                whatsapp_number, currency, direction, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (
                DEFAULT_CLINIC_ID,
                settings[0], settings[1], settings[2], settings[3], settings[4], settings[5],
                settings[6] or "EGP",
                settings[7] or "rtl",
                settings[8],
            ),
        )
        logger.info(f"Copied clinic_settings into clinics as {DEFAULT_CLINIC_ID}")
