"""Snapshot, restore and retention of a data directory."""
from __future__ import annotations

from .api import BackupService
from .errors import (
    BackupError,
    ConfigurationError,
    FatalInconsistentError,
    ValidationRejectedError,
)
from .retention import RetentionPolicy
from .types import (
    BackupOptions,
    CancellationToken,
    CompressionLevel,
    RestoreOutcome,
    RestoreResult,
    RetentionMode,
    RetentionSummary,
    SnapshotRecord,
    ValidationResult,
)

__all__ = [
    "BackupError",
    "BackupOptions",
    "BackupService",
    "CancellationToken",
    "CompressionLevel",
    "ConfigurationError",
    "FatalInconsistentError",
    "RestoreOutcome",
    "RestoreResult",
    "RetentionMode",
    "RetentionPolicy",
    "RetentionSummary",
    "SnapshotRecord",
    "ValidationResult",
]
