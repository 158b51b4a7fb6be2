"""
Migration v004: Users

Creates the PIN-authenticated users table and seeds an admin account for
the clinic owner with the default PIN 0000.
"""

import hashlib
import logging
import sqlite3
import uuid

from dentalflow.migrations.migration_base import MigrationBase

logger = logging.getLogger(__name__)

PIN_SALT = b"dental-flow-local-salt"
DEFAULT_PIN = "0000"


def hash_pin(pin: str) -> str:
    """scrypt(N=16384, r=8, p=1) hex digest, 64 bytes."""
    return hashlib.scrypt(pin.encode("utf-8"), salt=PIN_SALT, n=16384, r=8, p=1, dklen=64).hex()


class Migration(MigrationBase):
    version = 4
    description = "Add users table and seed clinic owner as admin"

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                clinic_id TEXT NOT NULL,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'staff',
                active BOOLEAN DEFAULT 1,
                pin_code TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                is_deleted BOOLEAN DEFAULT 0
            )
        """)

        clinic = conn.execute(
            "SELECT id, owner_name FROM clinics WHERE id = ?", ("clinic_001",)
        ).fetchone()
        if clinic is None:
            logger.warning("No clinic_001 found; skipping admin seeding")
            return

        existing = conn.execute(
            "SELECT id FROM users WHERE clinic_id = ? AND role = 'admin'", (clinic[0],)
        ).fetchone()
        if existing:
            return

        owner_name = clinic[1] or "Admin Doctor"
        conn.execute(
            "INSERT INTO users (id, clinic_id, name, role, active, pin_code) "
            "VALUES (?, ?, ?, 'admin', 1, ?)",
            (str(uuid.uuid4()), clinic[0], owner_name, hash_pin(DEFAULT_PIN)),
        )
        logger.info(f"Seeded admin user {owner_name} with the default PIN")
