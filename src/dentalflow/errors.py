"""
Error taxonomy for DentalFlow.

Every error carries a stable ``code`` so that engines can turn it into a
structured result and the CLI can show a message the user understands.
"""

from typing import Optional


class DentalFlowError(Exception):
    """Base exception for all DentalFlow errors"""
    code = "ERROR"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class DatabaseNotOpenError(DentalFlowError):
    """Database connection is not open"""
    code = "DATABASE_NOT_OPEN"


class ReadOnlyModeError(DentalFlowError):
    """System is in read-only mode"""
    code = "READ_ONLY_MODE"


class MigrationError(DentalFlowError):
    """Database migration failed"""
    code = "MIGRATION_FAILED"

    def __init__(self, message: Optional[str] = None, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class PasswordRequiredError(DentalFlowError):
    """Backup is encrypted and a password is required"""
    code = "PASSWORD_REQUIRED"


class DecryptionError(DentalFlowError):
    """Wrong password or tampered backup file"""
    code = "DECRYPTION_FAILED"


class CorruptedFileError(DentalFlowError):
    """Backup file is corrupted or not a valid database"""
    code = "CORRUPTED_FILE"


class _IdentityError(DentalFlowError):
    def __init__(self, message: Optional[str] = None, identity: Optional[str] = None):
        super().__init__(message)
        self.identity = identity


class OwnershipMismatchError(_IdentityError):
    """Backup belongs to a different account"""
    code = "OWNERSHIP_MISMATCH"


class ConfirmationRequiredError(_IdentityError):
    """Backup belongs to an account and must be confirmed before restoring"""
    code = "CONFIRMATION_REQUIRED"


class LicenseRestoreError(DentalFlowError):
    """Data restored but the license could not be reinstated"""
    code = "LICENSE_RESTORE_FAILED"


class SanitizeError(DentalFlowError):
    """Failed to sanitize backup"""
    code = "FAILED_TO_SANITIZE_BACKUP"


class BackupNotFoundError(DentalFlowError):
    """No backup file found"""
    code = "BACKUP_NOT_FOUND"


# Human-readable messages for result codes, shown by the CLI.
USER_MESSAGES = {
    PasswordRequiredError.code: "This backup is encrypted. Please enter its password.",
    DecryptionError.code: "Wrong password, or the backup file has been tampered with.",
    CorruptedFileError.code: "The backup file is corrupted or is not a clinic database.",
    OwnershipMismatchError.code: "This backup belongs to a different account.",
    ConfirmationRequiredError.code: "This backup belongs to an account. Confirm to restore it.",
    LicenseRestoreError.code: "The license could not be reinstated after the restore. Re-enter it manually.",
    SanitizeError.code: "Failed to sanitize the backup.",
    BackupNotFoundError.code: "No backup was found.",
    DatabaseNotOpenError.code: "The database is not open.",
    ReadOnlyModeError.code: "The system is in read-only mode.",
}


def user_message(code: Optional[str], fallback: Optional[str] = None) -> str:
    """Map a result code to a message for the user."""
    if code in USER_MESSAGES:
        return USER_MESSAGES[code]
    return fallback or "Operation failed."
