"""
Exceptions for gpg-cloud-backup.

Exception hierarchy:
    Exception
    └── BackupError
        ├── ConfigError          (missing/invalid settings, pre-flight)
        ├── DependencyMissing    (required external tool absent, pre-flight)
        ├── RecipientNotFound    (identity absent from the keyring, pre-flight)
        ├── NoValidTargets       (nothing left to back up after filtering)
        ├── StageFailure         (archive/encrypt/upload failed, aborts the run)
        └── RetentionFailure     (housekeeping failed, logged only)

Stage modules subclass StageFailure next to the code that raises it
(CompressionError, EncryptionError, StorageError).
"""

from typing import Optional


class BackupError(Exception):
    """
    Base exception for backup errors.

    Attributes:
        message: Human-readable error message
        hint: Optional remediation guidance shown to the operator
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message


class ConfigError(BackupError):
    """Raised when configuration is missing or invalid."""
    pass


class DependencyMissing(BackupError):
    """Raised when a required external tool is not installed."""
    pass


class RecipientNotFound(BackupError):
    """Raised when the configured recipient is not in the keyring."""
    pass


class NoValidTargets(BackupError):
    """Raised when no configured backup item exists."""
    pass


class StageFailure(BackupError):
    """Raised when archiving, encryption or upload fails."""
    pass


class RetentionFailure(BackupError):
    """Raised inside retention; never escapes a run."""
    pass
