"""
DentalFlow - practice-management core for a single dental clinic

Provides the local Schema Store, its migration runner, and the
backup/restore pipeline (integrity checks, encryption, license
sanitization, cloud and local transport).
"""

from .database import ConnectionManager
from .meta import MetaStore
from .integrity import IntegrityChecker
from .crypto import BackupCipher
from .license import LicenseSanitizer, LicenseSnapshot
from .backup import BackupEngine
from .restore import RestoreEngine
from .results import BackupResult, RestoreResult

__version__ = "1.0.1"

__all__ = [
    "ConnectionManager",
    "MetaStore",
    "IntegrityChecker",
    "BackupCipher",
    "LicenseSanitizer",
    "LicenseSnapshot",
    "BackupEngine",
    "RestoreEngine",
    "BackupResult",
    "RestoreResult",
    "__version__",
]
