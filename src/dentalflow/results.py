"""Structured results returned by the backup and restore engines."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any


class RestoreState(str, Enum):
    """Stages a single restore invocation moves through."""
    IDLE = "idle"
    LOCATED = "located"
    CLASSIFIED = "classified"
    DECRYPTED = "decrypted"
    INTEGRITY_VERIFIED = "integrity_verified"
    OWNERSHIP_VERIFIED = "ownership_verified"
    RECOVERY_SNAPSHOTTED = "recovery_snapshotted"
    OVERWRITTEN = "overwritten"
    SANITIZED = "sanitized"
    REOPENED = "reopened"
    LICENSE_RESTORED = "license_restored"
    DONE = "done"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class BackupResult:
    """Outcome of a backup run"""
    success: bool
    cloud: bool = False
    local: bool = False
    timestamp: Optional[str] = None
    local_path: Optional[Path] = None
    encrypted: bool = False
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def failure(cls, error: str, code: str = "BACKUP_FAILED") -> "BackupResult":
        return cls(success=False, error=error, code=code)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        if not self.success:
            return {"success": False, "error": self.error, "code": self.code}
        return {
            "success": True,
            "cloud": self.cloud,
            "local": self.local,
            "timestamp": self.timestamp,
            "local_path": str(self.local_path) if self.local_path else None,
            "encrypted": self.encrypted,
        }


@dataclass
class RestoreResult:
    """Outcome of a restore run"""
    success: bool
    state: RestoreState = RestoreState.IDLE
    error: Optional[str] = None
    code: Optional[str] = None
    rolled_back: bool = False
    identity: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        data: Dict[str, Any] = {"success": self.success, "state": self.state.value}
        if not self.success:
            data["error"] = self.error
            data["code"] = self.code
            data["rolled_back"] = self.rolled_back
        if self.identity:
            data["identity"] = self.identity
        if self.details:
            data["details"] = dict(self.details)
        return data
