"""Error hierarchy for snapshot operations."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing guard
    from .types import ValidationResult


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class ConfigurationError(BackupError):
    """Raised when the backup or data directory is unusable or options are invalid."""


class BackupDisabledError(ConfigurationError):
    """Raised when a backup is requested while backups are disabled."""


class SourceMissingError(BackupError):
    """Raised when the directory or snapshot to read from does not exist."""


class BackupIOError(BackupError):
    """Raised for disk errors while copying, archiving, extracting or deleting."""


class InsufficientSpaceError(BackupIOError):
    """Raised when free disk space is below the configured threshold."""


class CorruptionError(BackupError):
    """Raised when a snapshot is structurally unreadable."""


class OperationCancelledError(BackupError):
    """Raised when a cancellation token is set at a file boundary."""


class ValidationRejectedError(BackupError):
    """Raised when pre-restore validation fails; nothing was modified."""

    def __init__(self, message: str, *, validation: Optional["ValidationResult"] = None) -> None:
        super().__init__(message)
        self.validation = validation


class FatalInconsistentError(BackupError):
    """Raised when a failed restore could not be rolled back.

    The live data directory is in an unknown state and needs manual recovery.
    Both the error that interrupted the restore and the error raised while
    rolling back are kept so an operator can diagnose without the logs.
    """

    def __init__(
        self,
        message: str,
        *,
        original_error: BaseException,
        rollback_error: Optional[BaseException],
        safety_backup: Optional[Path] = None,
    ) -> None:
        super().__init__(message)
        self.original_error = original_error
        self.rollback_error = rollback_error
        self.safety_backup = safety_backup
        self.result = None


__all__ = [
    "BackupDisabledError",
    "BackupError",
    "BackupIOError",
    "ConfigurationError",
    "CorruptionError",
    "FatalInconsistentError",
    "InsufficientSpaceError",
    "OperationCancelledError",
    "SourceMissingError",
    "ValidationRejectedError",
]
