"""
Backup encryption

Artifact layout (all lengths in bytes):

    MAGIC (12) | SALT (64) | IV (16) | CIPHERTEXT | TAG (16)

MAGIC is ``DF_BACKUP_v1``. The key is PBKDF2-HMAC-SHA512 over the
passphrase (100 000 iterations, 32 bytes) and the cipher is AES-256-GCM,
so a wrong passphrase or a modified file fails the tag check instead of
producing garbage.

Artifacts written before the magic header existed are
``SALT (16) | IV (16) | CIPHERTEXT`` with a scrypt key and AES-256-CBC;
they can still be decrypted.
"""

import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .database import SQLITE_HEADER
from .errors import CorruptedFileError, DecryptionError

logger = logging.getLogger(__name__)

MAGIC_HEADER = b"DF_BACKUP_v1"
SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100_000

LEGACY_SALT_LENGTH = 16
LEGACY_IV_LENGTH = 16


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _derive_legacy_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


def _require_passphrase(passphrase: str) -> None:
    if not passphrase:
        raise ValueError("Password is required")


class BackupCipher:
    """Encrypts and decrypts backup artifacts with a user passphrase"""

    def is_encrypted_file(self, path: Path) -> bool:
        """
        Decide from the file contents whether decryption is needed.

        A plain SQLite file is never reported as encrypted. Anything that
        is neither our artifact nor SQLite is treated as encrypted (legacy
        format, or garbage that decryption will reject).
        """
        try:
            with open(path, "rb") as f:
                head = f.read(max(len(MAGIC_HEADER), len(SQLITE_HEADER)))
        except OSError as e:
            logger.warning(f"Cannot read {path} to classify it: {e}")
            return False

        if not head:
            return False
        if head.startswith(MAGIC_HEADER):
            return True
        if head.startswith(SQLITE_HEADER):
            return False
        return True

    def encrypt_backup(self, src_path: Path, dest_path: Path, passphrase: str) -> None:
        """Encrypt a plaintext snapshot into ``dest_path``."""
        _require_passphrase(passphrase)
        plaintext = Path(src_path).read_bytes()

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = _derive_key(passphrase, salt)
        # AESGCM returns ciphertext with the 16-byte tag appended
        sealed = AESGCM(key).encrypt(iv, plaintext, None)

        Path(dest_path).write_bytes(MAGIC_HEADER + salt + iv + sealed)
        logger.debug(f"Encrypted {src_path} -> {dest_path}")

    def decrypt_backup(self, src_path: Path, dest_path: Path, passphrase: str) -> None:
        """
        Decrypt an artifact into ``dest_path``.

        Raises:
            DecryptionError: Wrong passphrase or tampered ciphertext
            CorruptedFileError: Truncated artifact, or plaintext that is
                                not a database
            ValueError: Empty passphrase
        """
        _require_passphrase(passphrase)
        data = Path(src_path).read_bytes()

        if not data.startswith(MAGIC_HEADER):
            logger.warning(f"{src_path} has no backup header; trying legacy format")
            plaintext = self._decrypt_legacy(data, passphrase)
        else:
            plaintext = self._decrypt_current(data, passphrase)

        Path(dest_path).write_bytes(plaintext)
        logger.debug(f"Decrypted {src_path} -> {dest_path}")

    def _decrypt_current(self, data: bytes, passphrase: str) -> bytes:
        min_size = len(MAGIC_HEADER) + SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(data) < min_size:
            raise CorruptedFileError("Backup file is truncated")

        pos = len(MAGIC_HEADER)
        salt = data[pos:pos + SALT_LENGTH]
        pos += SALT_LENGTH
        iv = data[pos:pos + IV_LENGTH]
        pos += IV_LENGTH
        sealed = data[pos:]

        key = _derive_key(passphrase, salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, sealed, None)
        except InvalidTag:
            raise DecryptionError("Wrong password or tampered backup file") from None

        if not plaintext.startswith(SQLITE_HEADER):
            raise CorruptedFileError("Decrypted content is not a database")
        return plaintext

    def _decrypt_legacy(self, data: bytes, passphrase: str) -> bytes:
        header = LEGACY_SALT_LENGTH + LEGACY_IV_LENGTH
        body = data[header:]
        if len(body) == 0 or len(body) % 16 != 0:
            raise CorruptedFileError("Backup file is not a recognised format")

        salt = data[:LEGACY_SALT_LENGTH]
        iv = data[LEGACY_SALT_LENGTH:header]
        key = _derive_legacy_key(passphrase, salt)

        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            # CBC has no tag; a wrong key shows up as bad padding
            raise DecryptionError("Wrong password for legacy backup") from None

        if not plaintext.startswith(SQLITE_HEADER):
            raise DecryptionError("Wrong password for legacy backup")
        return plaintext
