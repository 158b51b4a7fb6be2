"""Tests for the ConnectionManager and the Metadata Store"""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from dentalflow.database import ConnectionManager, remove_sidecars, sidecar_paths
from dentalflow.errors import DatabaseNotOpenError, ReadOnlyModeError
from dentalflow.meta import MetaStore, UnknownMetaKeyError, lookup_key


@pytest.fixture
def connection(tmp_path):
    connection = ConnectionManager(tmp_path / "sub" / "clinic.db")
    connection.open()
    yield connection
    connection.close()


@pytest.fixture
def meta(connection):
    store = MetaStore(connection)
    store.ensure_table()
    return store


class TestConnectionManager:

    def test_open_creates_parent_and_enables_pragmas(self, connection):
        assert connection.db_path.exists()
        with connection.connection() as conn:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_open_and_close_are_idempotent(self, connection):
        first = connection.open()
        assert connection.open() is first
        connection.close()
        connection.close()
        assert not connection.is_open

    def test_get_when_closed_raises_typed_error(self, tmp_path):
        connection = ConnectionManager(tmp_path / "closed.db")
        with pytest.raises(DatabaseNotOpenError) as exc_info:
            connection.get()
        assert exc_info.value.code == "DATABASE_NOT_OPEN"

        with pytest.raises(DatabaseNotOpenError):
            with connection.connection():
                pass

    def test_transaction_commits(self, connection):
        with connection.transaction() as conn:
            conn.execute("CREATE TABLE t (v INTEGER)")
            conn.execute("INSERT INTO t VALUES (1)")
        with connection.connection() as conn:
            assert [tuple(row) for row in conn.execute("SELECT v FROM t")] == [(1,)]

    def test_transaction_rolls_back_and_reraises(self, connection):
        with connection.connection() as conn:
            conn.execute("CREATE TABLE t (v INTEGER)")

        with pytest.raises(RuntimeError):
            with connection.transaction() as conn:
                conn.execute("INSERT INTO t VALUES (1)")
                raise RuntimeError("abort")

        with connection.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0
            assert not conn.in_transaction

    def test_backup_to_produces_standalone_copy(self, connection, tmp_path):
        with connection.connection() as conn:
            conn.execute("CREATE TABLE t (v INTEGER)")
            conn.execute("INSERT INTO t VALUES (7)")

        dest = connection.backup_to(tmp_path / "copy" / "snapshot.db")

        assert all(not p.exists() for p in sidecar_paths(dest))
        copy = sqlite3.connect(dest)
        try:
            assert copy.execute("PRAGMA journal_mode").fetchone()[0] == "delete"
            assert copy.execute("SELECT v FROM t").fetchall() == [(7,)]
        finally:
            copy.close()

    def test_backup_to_works_while_closed(self, connection, tmp_path):
        with connection.connection() as conn:
            conn.execute("CREATE TABLE t (v INTEGER)")
        connection.close()

        dest = connection.backup_to(tmp_path / "closed_copy.db")

        assert dest.exists()
        assert not connection.is_open

    def test_backup_to_missing_database(self, tmp_path):
        connection = ConnectionManager(tmp_path / "missing.db")
        with pytest.raises(FileNotFoundError):
            connection.backup_to(tmp_path / "copy.db")

    def test_remove_sidecars(self, tmp_path):
        db_path = tmp_path / "x.db"
        for path in sidecar_paths(db_path):
            path.write_bytes(b"stale")

        remove_sidecars(db_path)

        assert all(not p.exists() for p in sidecar_paths(db_path))

    def test_context_manager(self, tmp_path):
        with ConnectionManager(tmp_path / "ctx.db") as connection:
            assert connection.is_open
        assert not connection.is_open

    def test_shared_across_threads(self, connection):
        with connection.connection() as conn:
            conn.execute("CREATE TABLE t (v INTEGER)")

        def write(value):
            with connection.transaction() as conn:
                conn.execute("INSERT INTO t VALUES (?)", (value,))

        threads = [threading.Thread(target=write, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with connection.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 10


class TestMetaStore:

    def test_typed_round_trips(self, meta):
        when = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
        meta.set("last_migration_version", 4)
        meta.set("migration_lock", True)
        meta.set("last_backup_at", when)
        meta.set("license_features", {"labs": True})
        meta.set("current_clinic_id", "clinic_001")

        assert meta.get("last_migration_version") == 4
        assert meta.get("migration_lock") is True
        assert meta.get("last_backup_at") == when
        assert meta.get("license_features") == {"labs": True}
        assert meta.get("current_clinic_id") == "clinic_001"

    def test_values_stored_as_text(self, meta, connection):
        meta.set("migration_lock", False)
        with connection.connection() as conn:
            row = conn.execute("SELECT value FROM app_meta WHERE key='migration_lock'").fetchone()
        assert row[0] == "false"

    def test_unknown_key_rejected(self, meta):
        with pytest.raises(UnknownMetaKeyError):
            meta.set("favourite_color", "blue")
        with pytest.raises(KeyError):
            meta.get("favourite_color")

    def test_wrong_type_rejected(self, meta):
        with pytest.raises(ValueError):
            meta.set("last_migration_version", "7")
        with pytest.raises(ValueError):
            meta.set("migration_lock", 1)

    def test_missing_key_returns_default(self, meta):
        assert meta.get("last_backup_at") is None
        assert meta.get("last_migration_version", 0) == 0

    def test_malformed_value_treated_as_missing(self, meta, connection):
        with connection.connection() as conn:
            conn.execute(
                "INSERT INTO app_meta (key, value) VALUES ('last_migration_version', 'abc')"
            )
        assert meta.get("last_migration_version", 0) == 0

    def test_javascript_timestamps_decode(self, meta, connection):
        with connection.connection() as conn:
            conn.execute(
                "INSERT INTO app_meta (key, value) VALUES ('last_app_usage_at', '2024-01-02T03:04:05.000Z')"
            )
        value = meta.get("last_app_usage_at")
        assert value == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_reads_without_table(self, connection):
        meta = MetaStore(connection)
        assert meta.get("license_status") is None
        assert meta.get_many(["license_status"]) == {}
        assert not meta.has_table()

    def test_last_write_wins(self, meta):
        meta.set("license_status", "trial")
        meta.set("license_status", "active")
        assert meta.get("license_status") == "active"

    def test_delete(self, meta):
        meta.set("activation_token", "tok")
        meta.delete("activation_token")
        assert meta.get("activation_token") is None

    def test_get_many_and_set_many(self, meta):
        meta.set_many({"license_status": "active", "license_type": "pro"})
        assert meta.get_many(["license_status", "license_type", "license_key_masked"]) == {
            "license_status": "active",
            "license_type": "pro",
        }

    def test_read_only_flag(self, meta):
        meta.require_writable()
        meta.set_read_only(True)
        assert meta.is_read_only()
        with pytest.raises(ReadOnlyModeError):
            meta.require_writable()

    def test_expired_license_enables_read_only(self, meta):
        meta.set_license_status("expired")
        assert meta.is_read_only()
        meta.set_license_status("active")
        assert not meta.is_read_only()

    def test_migration_version_must_not_be_negative(self, meta):
        with pytest.raises(ValueError):
            meta.set_migration_version(-1)

    def test_lookup_key(self):
        assert lookup_key("last_backup_at").codec.name == "datetime"
