"""Tests for the Crypto Gate"""

import os
import sqlite3
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from dentalflow.crypto import IV_LENGTH, MAGIC_HEADER, SALT_LENGTH, BackupCipher
from dentalflow.errors import CorruptedFileError, DecryptionError


@pytest.fixture
def cipher():
    return BackupCipher()


@pytest.fixture
def plain_db(tmp_path):
    path = tmp_path / "plain.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE patients (id TEXT PRIMARY KEY)")
    conn.execute("INSERT INTO patients VALUES ('p1')")
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def encrypted(cipher, plain_db, tmp_path):
    dest = tmp_path / "backup.db.enc"
    cipher.encrypt_backup(plain_db, dest, "correct-horse")
    return dest


def _legacy_encrypt(src: Path, dest: Path, passphrase: str) -> None:
    salt, iv = os.urandom(16), os.urandom(16)
    key = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1).derive(passphrase.encode())
    padder = padding.PKCS7(128).padder()
    padded = padder.update(src.read_bytes()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    dest.write_bytes(salt + iv + encryptor.update(padded) + encryptor.finalize())


class TestEncryption:

    def test_round_trip(self, cipher, plain_db, encrypted, tmp_path):
        out = tmp_path / "out.db"
        cipher.decrypt_backup(encrypted, out, "correct-horse")
        assert out.read_bytes() == plain_db.read_bytes()

    def test_layout(self, encrypted, plain_db):
        data = encrypted.read_bytes()
        assert data.startswith(MAGIC_HEADER)
        # header + salt + iv + ciphertext (same length as plaintext) + tag
        assert len(data) == len(MAGIC_HEADER) + SALT_LENGTH + IV_LENGTH + plain_db.stat().st_size + 16

    def test_fresh_salt_and_iv_per_run(self, cipher, plain_db, tmp_path):
        first, second = tmp_path / "a.enc", tmp_path / "b.enc"
        cipher.encrypt_backup(plain_db, first, "correct-horse")
        cipher.encrypt_backup(plain_db, second, "correct-horse")
        assert first.read_bytes() != second.read_bytes()

    def test_wrong_password(self, cipher, encrypted, tmp_path):
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt_backup(encrypted, tmp_path / "out.db", "wrong")
        assert exc_info.value.code == "DECRYPTION_FAILED"
        assert not (tmp_path / "out.db").exists()

    def test_tampered_ciphertext(self, cipher, encrypted, tmp_path):
        data = bytearray(encrypted.read_bytes())
        data[len(MAGIC_HEADER) + SALT_LENGTH + IV_LENGTH + 10] ^= 0x01
        encrypted.write_bytes(bytes(data))
        with pytest.raises(DecryptionError):
            cipher.decrypt_backup(encrypted, tmp_path / "out.db", "correct-horse")

    def test_truncated_artifact(self, cipher, tmp_path):
        path = tmp_path / "short.enc"
        path.write_bytes(MAGIC_HEADER + b"\x00" * 20)
        with pytest.raises(CorruptedFileError):
            cipher.decrypt_backup(path, tmp_path / "out.db", "correct-horse")

    def test_non_database_plaintext(self, cipher, tmp_path):
        src = tmp_path / "notes.txt"
        src.write_text("not a database")
        enc = tmp_path / "notes.enc"
        cipher.encrypt_backup(src, enc, "correct-horse")
        with pytest.raises(CorruptedFileError):
            cipher.decrypt_backup(enc, tmp_path / "out.db", "correct-horse")

    def test_empty_password_rejected(self, cipher, plain_db, tmp_path):
        with pytest.raises(ValueError):
            cipher.encrypt_backup(plain_db, tmp_path / "x.enc", "")


class TestLegacyFormat:

    def test_legacy_round_trip(self, cipher, plain_db, tmp_path):
        legacy = tmp_path / "legacy.enc"
        _legacy_encrypt(plain_db, legacy, "correct-horse")
        out = tmp_path / "out.db"

        assert cipher.is_encrypted_file(legacy)
        cipher.decrypt_backup(legacy, out, "correct-horse")
        assert out.read_bytes() == plain_db.read_bytes()

    def test_legacy_wrong_password(self, cipher, plain_db, tmp_path):
        legacy = tmp_path / "legacy.enc"
        _legacy_encrypt(plain_db, legacy, "correct-horse")
        with pytest.raises(DecryptionError):
            cipher.decrypt_backup(legacy, tmp_path / "out.db", "wrong")

    def test_garbage_is_corrupted(self, cipher, tmp_path):
        path = tmp_path / "garbage.bin"
        path.write_bytes(b"x" * 45)
        with pytest.raises(CorruptedFileError):
            cipher.decrypt_backup(path, tmp_path / "out.db", "correct-horse")


class TestClassification:

    def test_sqlite_is_plain(self, cipher, plain_db):
        assert not cipher.is_encrypted_file(plain_db)

    def test_artifact_is_encrypted(self, cipher, encrypted):
        assert cipher.is_encrypted_file(encrypted)

    def test_unknown_bytes_are_encrypted(self, cipher, tmp_path):
        path = tmp_path / "mystery.bin"
        path.write_bytes(os.urandom(64))
        assert cipher.is_encrypted_file(path)

    def test_missing_and_empty_files_are_plain(self, cipher, tmp_path):
        empty = tmp_path / "empty.db"
        empty.write_bytes(b"")
        assert not cipher.is_encrypted_file(empty)
        assert not cipher.is_encrypted_file(tmp_path / "missing.db")
