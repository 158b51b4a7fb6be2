"""Pytest fixtures for DentalFlow tests"""
import shutil
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure dentalflow is importable without installation
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from dentalflow.bootstrap import initialize_database
from dentalflow.repositories import PatientRepository
from dentalflow.settings import Settings
from dentalflow.storage_backends import RemoteFile, RemoteStore


OWNER_EMAIL = "owner@clinic.example"


class FakeRemoteStore(RemoteStore):
    """In-memory backup folder keyed by file name."""

    def __init__(self, authenticated: bool = True):
        self.authenticated = authenticated
        self.blobs: Dict[str, bytes] = {}
        self.files: Dict[str, RemoteFile] = {}
        self.downloads: List[str] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def is_authenticated(self) -> bool:
        return self.authenticated

    def upload_file(self, local_path, name, mime_type, description=None) -> RemoteFile:
        data = Path(local_path).read_bytes()
        remote_file = RemoteFile(id=name, name=name, size=len(data),
                                 created_at=self._tick(), description=description)
        self.blobs[name] = data
        self.files[name] = remote_file
        return remote_file

    def find_file(self, name) -> Optional[RemoteFile]:
        return self.files.get(name)

    def download_file(self, file_id, dest_path) -> Path:
        if file_id not in self.blobs:
            raise KeyError(file_id)
        self.downloads.append(file_id)
        dest_path = Path(dest_path)
        dest_path.write_bytes(self.blobs[file_id])
        return dest_path

    def list_files(self, limit: int = 50) -> List[RemoteFile]:
        files = sorted(self.files.values(), key=lambda f: f.created_at, reverse=True)
        return files[:limit]

    def delete_file(self, file_id) -> bool:
        if file_id not in self.files:
            return False
        del self.files[file_id]
        del self.blobs[file_id]
        return True

    def get_file_metadata(self, file_id) -> Optional[RemoteFile]:
        return self.files.get(file_id)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def settings(data_dir, tmp_path):
    """Settings with a local backup folder that exists."""
    backup_dir = tmp_path / "local_backups"
    backup_dir.mkdir()
    settings = Settings.load(data_dir)
    settings.set("backup.local_path", str(backup_dir))
    settings.save()
    return settings


@pytest.fixture
def db(settings):
    """Migrated clinic database, open."""
    connection, report = initialize_database(settings.database_path)
    assert report.success, report.error
    yield connection
    connection.close()


def seed_owner(connection, email: str = OWNER_EMAIL) -> None:
    """Record the clinic owner's email the way the setup wizard does."""
    with connection.connection() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO clinic_settings (id, clinic_name, owner_name, email) "
            "VALUES ('settings_1', 'Smile Clinic', 'Dr. Owner', ?)",
            (email,),
        )
        conn.execute(
            "INSERT OR REPLACE INTO clinics (id, name, owner_name, email) "
            "VALUES ('clinic_001', 'Smile Clinic', 'Dr. Owner', ?)",
            (email,),
        )


@pytest.fixture
def owned_db(db):
    seed_owner(db)
    return db


@pytest.fixture
def patients(db):
    return PatientRepository(db)


@pytest.fixture
def add_patients(patients):
    """Insert patients by name; returns their ids."""
    def _add(*names: str) -> List[str]:
        return [patients.create({"full_name": name, "phone": "0100000000"}) for name in names]
    return _add


@pytest.fixture
def copy_file(tmp_path):
    """Copy a file somewhere the engines will not touch it."""
    def _copy(path: Path, name: str) -> Path:
        dest = tmp_path / "saved" / name
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, dest)
        return dest
    return _copy
