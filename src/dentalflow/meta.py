"""
Metadata Store - typed key/value application state

Backed by the ``app_meta`` table. Every known key is declared in
``META_KEYS`` with a codec; values are encoded to text on write and
decoded on read, so callers never parse stored strings themselves.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from .database import ConnectionManager
from .errors import ReadOnlyModeError

logger = logging.getLogger(__name__)


class UnknownMetaKeyError(KeyError):
    """Raised for keys that are not declared in the registry."""


@dataclass(frozen=True)
class Codec:
    """Text encoding for one kind of metadata value"""
    name: str
    encode: Callable[[Any], str]
    decode: Callable[[str], Any]


def _encode_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected str, got {type(value).__name__}")
    return value


def _encode_int(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected int, got {type(value).__name__}")
    return str(value)


def _encode_bool(value: Any) -> str:
    if not isinstance(value, bool):
        raise ValueError(f"expected bool, got {type(value).__name__}")
    return "true" if value else "false"


def _decode_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0", ""):
        return False
    raise ValueError(f"not a boolean: {text!r}")


def _encode_datetime(value: Any) -> str:
    if not isinstance(value, datetime):
        raise ValueError(f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _decode_datetime(text: str) -> datetime:
    # JavaScript-style ISO strings end in "Z"
    parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


STR = Codec("str", _encode_str, str)
INT = Codec("int", _encode_int, lambda text: int(text.strip()))
BOOL = Codec("bool", _encode_bool, _decode_bool)
JSON = Codec("json", lambda value: json.dumps(value), json.loads)
DATETIME = Codec("datetime", _encode_datetime, _decode_datetime)


@dataclass(frozen=True)
class MetaKey:
    name: str
    codec: Codec


def _keys(codec: Codec, *names: str) -> Dict[str, MetaKey]:
    return {name: MetaKey(name, codec) for name in names}


# Keys holding machine-bound license data. Captured before a restore and
# written back afterwards.
LICENSE_KEYS = (
    "license_cache_encrypted",
    "license_key_masked",
    "license_expires_at",
    "last_license_check_at",
    "device_fingerprint",
    "support_unlock_until",
    "license_status",
    "license_type",
    "owner_email",
)

META_KEYS: Dict[str, MetaKey] = {
    **_keys(INT, "last_migration_version"),
    **_keys(BOOL, "migration_lock"),
    **_keys(STR, *LICENSE_KEYS),
    **_keys(STR, "activation_token", "app_version"),
    **_keys(STR, "current_user_id", "remembered_user_id", "current_clinic_id"),
    **_keys(DATETIME, "last_app_usage_at", "last_backup_at"),
    **_keys(JSON, "license_features"),
}


def lookup_key(key: str) -> MetaKey:
    try:
        return META_KEYS[key]
    except KeyError:
        raise UnknownMetaKeyError(key) from None


class MetaStore:
    """
    Metadata Store over the ``app_meta`` table.

    Writes are INSERT OR REPLACE (last write wins). Reads of values that
    no longer decode are logged and treated as missing.
    """

    TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, connection: ConnectionManager):
        self.connection = connection

    def ensure_table(self) -> None:
        with self.connection.connection() as conn:
            conn.execute(self.TABLE_SQL)

    def has_table(self) -> bool:
        with self.connection.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type='table' AND name='app_meta'"
            ).fetchone()
            return row is not None

    def get_raw(self, key: str) -> Optional[str]:
        lookup_key(key)
        with self.connection.connection() as conn:
            try:
                row = conn.execute(
                    "SELECT value FROM app_meta WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.OperationalError as e:
                if "no such table" in str(e):
                    return None
                raise
        return row[0] if row else None

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a value.

        Args:
            key: Registered metadata key
            default: Returned when the key is missing or undecodable

        Raises:
            UnknownMetaKeyError: If the key is not registered
        """
        meta_key = lookup_key(key)
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return meta_key.codec.decode(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed {meta_key.codec.name} value for {key}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Encode and store a value.

        Raises:
            UnknownMetaKeyError: If the key is not registered
            ValueError: If the value does not fit the key's codec
        """
        meta_key = lookup_key(key)
        encoded = meta_key.codec.encode(value)
        with self.connection.connection() as conn:
            conn.execute(self.TABLE_SQL)
            conn.execute(
                "INSERT OR REPLACE INTO app_meta (key, value, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                (key, encoded),
            )

    def delete(self, key: str) -> None:
        lookup_key(key)
        with self.connection.connection() as conn:
            if self.has_table():
                conn.execute("DELETE FROM app_meta WHERE key = ?", (key,))

    def get_many(self, keys: Iterable[str]) -> Dict[str, str]:
        """Return raw stored text for the keys that are present."""
        keys = list(keys)
        for key in keys:
            lookup_key(key)
        if not keys or not self.has_table():
            return {}
        placeholders = ",".join("?" for _ in keys)
        with self.connection.connection() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM app_meta WHERE key IN ({placeholders})",
                keys,
            ).fetchall()
        return {row[0]: row[1] for row in rows if row[1] is not None}

    def set_many(self, values: Dict[str, str]) -> None:
        """Write raw text values for several keys in one transaction."""
        for key in values:
            lookup_key(key)
        if not values:
            return
        with self.connection.transaction() as conn:
            conn.execute(self.TABLE_SQL)
            conn.executemany(
                "INSERT OR REPLACE INTO app_meta (key, value, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                list(values.items()),
            )

    # ==================== Convenience accessors ====================

    def get_migration_version(self) -> int:
        return self.get("last_migration_version", 0)

    def set_migration_version(self, version: int) -> None:
        if version < 0:
            raise ValueError(f"Migration version must be >= 0, got {version}")
        self.set("last_migration_version", version)

    def is_read_only(self) -> bool:
        return bool(self.get("migration_lock", False))

    def set_read_only(self, read_only: bool) -> None:
        self.set("migration_lock", read_only)
        logger.info(f"Read-only mode {'enabled' if read_only else 'disabled'}")

    def require_writable(self) -> None:
        """Raise ReadOnlyModeError while the read-only flag is set."""
        if self.is_read_only():
            raise ReadOnlyModeError("System is in read-only mode; writes are blocked")

    def set_license_status(self, status: str) -> None:
        self.set("license_status", status)
        self.set_read_only(status == "expired")

    def record_app_usage(self, now: Optional[datetime] = None) -> None:
        self.set("last_app_usage_at", now or datetime.now(timezone.utc))

    def get_last_backup_at(self) -> Optional[datetime]:
        return self.get("last_backup_at")

    def set_last_backup_at(self, when: Optional[datetime] = None) -> None:
        self.set("last_backup_at", when or datetime.now(timezone.utc))
