"""
Tests for the Restore Engine

Covers:
- Local and cloud round trips
- Password handling and the live database staying untouched on failure
- Ownership checks (mismatch, confirmation, override, open backups)
- License preservation across a restore
- Recovery copy and rollback
"""

import sqlite3
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from dentalflow.backup import CLOUD_FILENAME, BackupEngine
from dentalflow.database import SQLITE_HEADER
from dentalflow.errors import LicenseRestoreError
from dentalflow.integrity import hash_file
from dentalflow.meta import MetaStore
from dentalflow.repositories import PatientRepository
from dentalflow.restore import RECOVERY_FILENAME, RestoreEngine, mask_identity
from dentalflow.results import RestoreState


OWNER_EMAIL = "owner@clinic.example"


@pytest.fixture
def live(owned_db):
    MetaStore(owned_db).set_many({"license_status": "active", "device_fingerprint": "this-machine"})
    return owned_db


@pytest.fixture
def repo(live):
    return PatientRepository(live)


@pytest.fixture
def backup_engine(live, settings, remote, tmp_path):
    return BackupEngine(live, settings, remote=remote, temp_dir=tmp_path / "backup_work")


@pytest.fixture
def restore_engine(live, remote, tmp_path):
    return RestoreEngine(live, remote=remote, temp_dir=tmp_path / "restore_work", release_delay=0)


@pytest.fixture
def three_patients(repo):
    return [repo.create({"full_name": name, "phone": "0100"}) for name in ("Amal", "Basma", "Karim")]


@pytest.fixture
def local_backup(backup_engine, three_patients):
    result = backup_engine.perform_backup(mode="local")
    assert result.success, result.error
    return result.local_path


@pytest.fixture
def encrypted_backup(backup_engine, three_patients):
    result = backup_engine.perform_backup(password="correct-horse", mode="local")
    assert result.success, result.error
    return result.local_path


def _patient_names(connection):
    with connection.connection() as conn:
        return sorted(row[0] for row in conn.execute("SELECT full_name FROM patients"))


def _plain_target(path):
    """A clinic file in rollback-journal mode holding its own license."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA journal_mode=DELETE")
        conn.execute("CREATE TABLE app_meta (key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)")
        conn.executemany(
            "INSERT INTO app_meta (key, value) VALUES (?, ?)",
            [("license_status", "other-license"), ("device_fingerprint", "other-machine")],
        )
        conn.commit()
    finally:
        conn.close()
    return path


def _live_fingerprint(connection):
    connection.checkpoint()
    return hash_file(connection.db_path)


class TestRoundTrip:

    def test_local_restore_brings_back_deleted_patients(self, restore_engine, live, repo,
                                                       three_patients, local_backup):
        repo.delete(three_patients[0])
        repo.delete(three_patients[1])
        assert _patient_names(live) == ["Karim"]

        result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        assert result.success, result.error
        assert result.state == RestoreState.DONE
        assert live.is_open
        assert _patient_names(live) == ["Amal", "Basma", "Karim"]

    def test_encrypted_restore(self, restore_engine, live, repo, three_patients, encrypted_backup):
        repo.delete(three_patients[0])

        result = restore_engine.restore_from_local_file(
            encrypted_backup, password="correct-horse", verify_email=OWNER_EMAIL
        )

        assert result.success, result.error
        assert len(_patient_names(live)) == 3

    def test_cloud_restore(self, backup_engine, restore_engine, live, repo, three_patients, remote):
        assert backup_engine.perform_backup(mode="cloud").cloud
        repo.delete(three_patients[2])

        result = restore_engine.restore_from_cloud(verify_email=OWNER_EMAIL)

        assert result.success, result.error
        assert remote.downloads == [CLOUD_FILENAME]
        assert _patient_names(live) == ["Amal", "Basma", "Karim"]

    def test_cloud_restore_by_file_id(self, backup_engine, restore_engine, live, three_patients, remote):
        backup_engine.perform_backup(password="correct-horse", mode="cloud")

        result = restore_engine.restore_from_cloud(
            file_id=CLOUD_FILENAME, password="correct-horse", verify_email=OWNER_EMAIL
        )

        assert result.success, result.error

    def test_restore_into_other_target(self, restore_engine, live, local_backup, tmp_path):
        target = tmp_path / "elsewhere" / "clinic.db"
        before = _live_fingerprint(live)

        result = restore_engine.restore_from_local_file(
            local_backup, target_db_path=target, verify_email=OWNER_EMAIL
        )

        assert result.success, result.error
        assert target.exists()
        assert _live_fingerprint(live) == before

    def test_temporary_files_removed(self, restore_engine, encrypted_backup, tmp_path):
        restore_engine.restore_from_local_file(
            encrypted_backup, password="correct-horse", verify_email=OWNER_EMAIL
        )
        assert list((tmp_path / "restore_work").iterdir()) == []


class TestLicensePreservation:

    def test_live_license_survives_restore(self, restore_engine, live, local_backup):
        meta = MetaStore(live)
        meta.set("license_type", "clinic-pro")

        result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        assert result.success, result.error
        meta = MetaStore(live)
        assert meta.get("license_status") == "active"
        assert meta.get("device_fingerprint") == "this-machine"
        assert meta.get("license_type") == "clinic-pro"

    def test_foreign_license_never_imported(self, restore_engine, live, tmp_path):
        # A backup carrying another machine's license that escaped sanitization
        foreign = tmp_path / "foreign.db"
        live.backup_to(foreign)
        conn = sqlite3.connect(foreign)
        conn.execute("UPDATE app_meta SET value = 'other-machine' WHERE key = 'device_fingerprint'")
        conn.execute("INSERT OR REPLACE INTO app_meta (key, value) VALUES ('activation_token', 'stolen')")
        conn.commit()
        conn.close()

        result = restore_engine.restore_from_local_file(foreign, verify_email=OWNER_EMAIL)

        assert result.success, result.error
        meta = MetaStore(live)
        assert meta.get("device_fingerprint") == "this-machine"
        assert meta.get("activation_token") is None
        assert result.details["sanitized"]["meta_keys"] >= 3

    def test_other_target_license_survives_restore(self, restore_engine, local_backup, tmp_path):
        target = _plain_target(tmp_path / "other" / "clinic.db")

        result = restore_engine.restore_from_local_file(
            local_backup, target_db_path=target, verify_email=OWNER_EMAIL
        )

        assert result.success, result.error
        conn = sqlite3.connect(target)
        try:
            rows = dict(conn.execute(
                "SELECT key, value FROM app_meta WHERE key IN ('license_status', 'device_fingerprint')"
            ).fetchall())
        finally:
            conn.close()
        assert rows == {"license_status": "other-license", "device_fingerprint": "other-machine"}

    def test_other_target_not_converted_before_overwrite(self, restore_engine, local_backup, tmp_path):
        target = _plain_target(tmp_path / "other" / "clinic.db")
        modes = []

        def record_mode(live, candidate, path):
            conn = sqlite3.connect(path)
            try:
                modes.append(conn.execute("PRAGMA journal_mode").fetchone()[0])
            finally:
                conn.close()
            raise OSError("disk unplugged")

        with patch.object(restore_engine, "_overwrite", side_effect=record_mode):
            result = restore_engine.restore_from_local_file(
                local_backup, target_db_path=target, verify_email=OWNER_EMAIL
            )

        assert not result.success
        assert modes == ["delete"]


class TestPasswordHandling:

    def test_wrong_password_leaves_live_database_untouched(self, restore_engine, live, encrypted_backup):
        before = _live_fingerprint(live)

        result = restore_engine.restore_from_local_file(
            encrypted_backup, password="wrong", verify_email=OWNER_EMAIL
        )

        assert not result.success
        assert result.code == "DECRYPTION_FAILED"
        assert result.state == RestoreState.FAILED
        assert not result.rolled_back
        assert hash_file(live.db_path) == before
        assert not (live.db_path.parent / RECOVERY_FILENAME).exists()

    def test_missing_password(self, restore_engine, encrypted_backup):
        result = restore_engine.restore_from_local_file(encrypted_backup, verify_email=OWNER_EMAIL)

        assert result.code == "PASSWORD_REQUIRED"

    def test_cloud_password_checked_before_download(self, backup_engine, restore_engine, remote,
                                                    three_patients):
        backup_engine.perform_backup(password="correct-horse", mode="cloud")

        result = restore_engine.restore_from_cloud(verify_email=OWNER_EMAIL)

        assert result.code == "PASSWORD_REQUIRED"
        assert remote.downloads == []

    def test_corrupted_candidate(self, restore_engine, live, tmp_path):
        bogus = tmp_path / "bogus.db"
        bogus.write_bytes(SQLITE_HEADER + b"\x00" * 50)
        before = _live_fingerprint(live)

        result = restore_engine.restore_from_local_file(bogus)

        assert result.code == "CORRUPTED_FILE"
        assert hash_file(live.db_path) == before


class TestOwnership:

    def test_mismatch_blocks_restore(self, restore_engine, live, local_backup):
        before = _live_fingerprint(live)

        result = restore_engine.restore_from_local_file(local_backup, verify_email="someone@else.example")

        assert result.code == "OWNERSHIP_MISMATCH"
        assert result.identity == "o***r@clinic.example"
        assert hash_file(live.db_path) == before

    def test_confirmation_required_without_expected_identity(self, restore_engine, local_backup):
        result = restore_engine.restore_from_local_file(local_backup)

        assert result.code == "CONFIRMATION_REQUIRED"
        assert result.identity == "o***r@clinic.example"

    def test_force_overrides(self, restore_engine, local_backup, caplog):
        result = restore_engine.restore_from_local_file(
            local_backup, verify_email="someone@else.example", force=True
        )

        assert result.success, result.error
        assert "Ownership override" in caplog.text

    def test_email_comparison_ignores_case(self, restore_engine, local_backup):
        result = restore_engine.restore_from_local_file(local_backup, verify_email="  OWNER@Clinic.Example ")

        assert result.success, result.error

    def test_backup_without_owner_is_open(self, db, remote, tmp_path):
        snapshot = tmp_path / "ownerless.db"
        db.backup_to(snapshot)
        engine = RestoreEngine(db, remote=remote, temp_dir=tmp_path / "work", release_delay=0)

        result = engine.restore_from_local_file(snapshot, verify_email="anyone@example.com")

        assert result.success, result.error
        assert result.identity is None

    def test_mask_identity(self):
        assert mask_identity("owner@clinic.example") == "o***r@clinic.example"
        assert mask_identity("al@x.io") == "a***@x.io"
        assert mask_identity("nodomain") == "n***n"


class TestRecoveryAndRollback:

    def test_recovery_copy_written(self, restore_engine, live, repo, three_patients, local_backup):
        repo.delete(three_patients[0])

        result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        recovery = live.db_path.parent / RECOVERY_FILENAME
        assert result.details["recovery_path"] == str(recovery)
        conn = sqlite3.connect(recovery)
        try:
            assert conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0] == 2
        finally:
            conn.close()

    def test_license_failure_rolls_back(self, restore_engine, live, repo, three_patients, local_backup):
        repo.delete(three_patients[0])
        repo.delete(three_patients[1])

        with patch.object(restore_engine.sanitizer, "restore_license",
                          side_effect=LicenseRestoreError("disk full")):
            result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        assert not result.success
        assert result.code == "LICENSE_RESTORE_FAILED"
        assert result.rolled_back
        assert result.state == RestoreState.ROLLED_BACK
        assert live.is_open
        assert _patient_names(live) == ["Karim"]
        assert MetaStore(live).get("license_status") == "active"

    def test_sanitize_failure_rolls_back(self, restore_engine, live, local_backup):
        before = _patient_names(live)

        with patch.object(restore_engine.sanitizer, "sanitize", side_effect=RuntimeError("locked")):
            result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        assert result.code == "RESTORE_FAILED"
        assert result.rolled_back
        assert _patient_names(live) == before

    def test_recovery_copy_is_best_effort(self, restore_engine, live, local_backup):
        with patch("dentalflow.restore.shutil.copy2", side_effect=OSError("read-only folder")):
            result = restore_engine.restore_from_local_file(local_backup, verify_email=OWNER_EMAIL)

        assert result.success, result.error


class TestNotFound:

    def test_missing_local_file(self, restore_engine, tmp_path):
        result = restore_engine.restore_from_local_file(tmp_path / "gone.db")

        assert result.code == "BACKUP_NOT_FOUND"

    def test_empty_cloud(self, restore_engine):
        result = restore_engine.restore_from_cloud()

        assert result.code == "BACKUP_NOT_FOUND"

    def test_unauthenticated_cloud(self, restore_engine, remote):
        remote.authenticated = False

        result = restore_engine.restore_from_cloud()

        assert result.code == "STORAGE_AUTH_FAILED"

    def test_no_remote(self, live):
        result = RestoreEngine(live, release_delay=0).restore_from_cloud()

        assert result.code == "BACKUP_NOT_FOUND"
        assert result.to_dict()["success"] is False
