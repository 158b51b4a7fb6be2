"""Tests for the License Sanitizer"""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from dentalflow.errors import LicenseRestoreError, SanitizeError
from dentalflow.license import LicenseSanitizer, LicenseSnapshot
from dentalflow.meta import MetaStore


LICENSE_VALUES = {
    "license_status": "active",
    "license_type": "pro",
    "license_key_masked": "ABCD-****-****-WXYZ",
    "license_expires_at": "2030-01-01T00:00:00Z",
    "device_fingerprint": "fp-123",
}


@pytest.fixture
def sanitizer():
    return LicenseSanitizer()


@pytest.fixture
def licensed_db(tmp_path):
    path = tmp_path / "licensed.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE app_meta (key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)")
    conn.execute("CREATE TABLE licenses (id INTEGER PRIMARY KEY, license_key TEXT)")
    conn.execute("CREATE TABLE patients (id TEXT PRIMARY KEY)")
    rows = list(LICENSE_VALUES.items()) + [
        ("device_id", "machine-7"),
        ("support_unlock_until", "2025-01-01"),
        ("last_license_check_at", "2024-06-01"),
        ("activation_token", "secret-token"),
        ("last_migration_version", "9"),
        ("app_version", "1.0.1"),
        # Underscore is literal: this key must survive
        ("licensee", "kept"),
    ]
    conn.executemany("INSERT INTO app_meta (key, value) VALUES (?, ?)", rows)
    conn.execute("INSERT INTO licenses (license_key) VALUES ('AAAA-BBBB')")
    conn.execute("INSERT INTO patients VALUES ('p1')")
    conn.commit()
    conn.close()
    return path


def _meta_keys(path: Path):
    conn = sqlite3.connect(path)
    try:
        return {row[0] for row in conn.execute("SELECT key FROM app_meta")}
    finally:
        conn.close()


class TestSanitize:

    def test_strips_license_data(self, sanitizer, licensed_db):
        counts = sanitizer.sanitize(licensed_db)

        assert _meta_keys(licensed_db) == {"last_migration_version", "app_version", "licensee"}
        assert counts == {"licenses": 1, "meta_keys": 9}

        conn = sqlite3.connect(licensed_db)
        try:
            assert conn.execute("SELECT COUNT(*) FROM licenses").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0] == 1
        finally:
            conn.close()

    def test_is_idempotent(self, sanitizer, licensed_db):
        sanitizer.sanitize(licensed_db)
        assert sanitizer.sanitize(licensed_db) == {"licenses": 0, "meta_keys": 0}

    def test_database_without_license_tables(self, sanitizer, tmp_path):
        path = tmp_path / "bare.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE patients (id TEXT)")
        conn.commit()
        conn.close()

        assert sanitizer.sanitize(path) == {"licenses": 0, "meta_keys": 0}

    def test_unreadable_file_raises(self, sanitizer, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"not a database at all, not even close" * 100)

        with pytest.raises(SanitizeError) as exc_info:
            sanitizer.sanitize(path)
        assert exc_info.value.code == "FAILED_TO_SANITIZE_BACKUP"


class TestCaptureAndRestore:

    @pytest.fixture
    def meta(self, db):
        store = MetaStore(db)
        store.set_many(LICENSE_VALUES)
        return store

    def test_capture_reads_license_keys(self, sanitizer, meta):
        snapshot = sanitizer.capture_license(meta)

        assert dict(snapshot.fields) == LICENSE_VALUES
        assert "ABCD" not in repr(snapshot)

    def test_read_license_file_leaves_file_untouched(self, sanitizer, licensed_db):
        before = licensed_db.read_bytes()

        snapshot = sanitizer.read_license_file(licensed_db)

        assert dict(snapshot.fields) == {
            **LICENSE_VALUES,
            "support_unlock_until": "2025-01-01",
            "last_license_check_at": "2024-06-01",
        }
        assert licensed_db.read_bytes() == before
        conn = sqlite3.connect(licensed_db)
        try:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "delete"
        finally:
            conn.close()

    def test_read_license_file_without_meta_table(self, sanitizer, tmp_path):
        path = tmp_path / "bare.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE patients (id TEXT)")
        conn.commit()
        conn.close()

        assert sanitizer.read_license_file(path).is_empty

    def test_read_license_file_unreadable(self, sanitizer, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"not a database at all, not even close" * 100)

        with pytest.raises(SanitizeError):
            sanitizer.read_license_file(path)

    def test_snapshot_is_immutable(self):
        snapshot = LicenseSnapshot({"license_status": "active"})
        with pytest.raises(TypeError):
            snapshot.fields["license_status"] = "expired"

    def test_restore_writes_snapshot_back(self, sanitizer, meta, db):
        snapshot = sanitizer.capture_license(meta)
        sanitizer.sanitize(db.db_path)

        sanitizer.restore_license(meta, snapshot)

        assert meta.get("license_status") == "active"
        assert meta.get("device_fingerprint") == "fp-123"

    def test_restore_of_empty_snapshot_is_a_no_op(self, sanitizer):
        meta = MagicMock()
        sanitizer.restore_license(meta, LicenseSnapshot())
        meta.set_many.assert_not_called()

    def test_restore_failure_is_typed(self, sanitizer):
        meta = MagicMock()
        meta.set_many.side_effect = RuntimeError("disk full")

        with pytest.raises(LicenseRestoreError) as exc_info:
            sanitizer.restore_license(meta, LicenseSnapshot({"license_status": "active"}))
        assert exc_info.value.code == "LICENSE_RESTORE_FAILED"
