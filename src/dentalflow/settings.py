"""
Persisted settings

Settings that must survive a database restore (backup folder, schedule,
last backup time, remote credentials) live in ``config.yaml`` next to the
database rather than inside it.
"""

import copy
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".dentalflow"
CONFIG_FILENAME = "config.yaml"

BACKUP_FREQUENCIES = {"off": None, "daily": 1, "weekly": 7, "monthly": 30}
BACKUP_MODES = ("local", "cloud", "both")

DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {
        "path": None,
    },
    "backup": {
        "local_path": None,
        "frequency": "off",
        "mode": "both",
        "retention_count": 10,
        "last_backup_at": None,
    },
    "remote": {
        "type": "s3",
        "bucket": None,
        "prefix": "dental-flow-backups",
        "region": "auto",
        "endpoint": None,
        "access_key": None,
        "secret_key": None,
    },
}


def get_data_dir(data_dir: Optional[Path] = None) -> Path:
    """
    Resolve the data directory.

    Priority: explicit value > DENTALFLOW_DATA_DIR env var > ~/.dentalflow
    """
    if data_dir:
        return Path(data_dir)
    env_path = os.getenv("DENTALFLOW_DATA_DIR")
    if env_path:
        return Path(env_path)
    return DEFAULT_DATA_DIR


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate(key: str, value: Any) -> Any:
    if key == "backup.frequency" and value not in BACKUP_FREQUENCIES:
        raise ValueError(
            f"backup.frequency must be one of {', '.join(BACKUP_FREQUENCIES)}, got {value!r}"
        )
    if key == "backup.mode" and value not in BACKUP_MODES:
        raise ValueError(f"backup.mode must be one of {', '.join(BACKUP_MODES)}, got {value!r}")
    if key == "backup.retention_count":
        value = int(value)
        if value < 1:
            raise ValueError(f"backup.retention_count must be >= 1, got {value}")
    return value


class Settings:
    """
    YAML-backed settings with dotted-key access.

    Example:
        settings = Settings.load(data_dir)
        settings.set("backup.frequency", "weekly")
        settings.save()
    """

    def __init__(self, path: Path, data: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        self.data = _merge(DEFAULT_CONFIG, data or {})

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Settings":
        """Load ``config.yaml`` from the data directory; defaults if missing."""
        path = get_data_dir(data_dir) / CONFIG_FILENAME
        data: Dict[str, Any] = {}
        if path.exists():
            data = yaml.safe_load(path.read_text()) or {}
            if not isinstance(data, dict):
                raise ValueError(f"{path} does not contain a mapping")
        return cls(path, data)

    @property
    def data_dir(self) -> Path:
        return self.path.parent

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(self.data, default_flow_style=False, sort_keys=False))

    def get(self, key: str, default: Any = None) -> Any:
        current: Any = self.data
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def set(self, key: str, value: Any) -> None:
        """
        Set a dotted key.

        Raises:
            ValueError: For invalid backup settings
        """
        value = _validate(key, value)
        parts = key.split(".")
        current = self.data
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    # ==================== Typed accessors ====================

    @property
    def database_path(self) -> Path:
        configured = self.get("database.path")
        return Path(configured) if configured else self.data_dir / "clinic.db"

    @property
    def local_backup_path(self) -> Optional[Path]:
        configured = self.get("backup.local_path")
        return Path(configured).expanduser() if configured else None

    @property
    def backup_frequency(self) -> str:
        frequency = self.get("backup.frequency") or "off"
        if frequency not in BACKUP_FREQUENCIES:
            logger.warning(f"Unknown backup frequency {frequency!r}; treating as off")
            return "off"
        return frequency

    @property
    def backup_mode(self) -> str:
        mode = self.get("backup.mode") or "both"
        return mode if mode in BACKUP_MODES else "both"

    @property
    def retention_count(self) -> int:
        try:
            return max(1, int(self.get("backup.retention_count", 10)))
        except (TypeError, ValueError):
            return 10

    @property
    def last_backup_at(self) -> Optional[datetime]:
        raw = self.get("backup.last_backup_at")
        if not raw:
            return None
        if isinstance(raw, datetime):
            parsed = raw
        else:
            try:
                parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Ignoring malformed backup.last_backup_at: {raw!r}")
                return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    def record_backup(self, when: Optional[datetime] = None) -> None:
        """Store the completion time of a backup and save."""
        when = when or datetime.now(timezone.utc)
        self.set("backup.last_backup_at", when.isoformat())
        self.save()
