"""Ready-made option sets for common deployments."""
from __future__ import annotations

from typing import Dict

from .types import BackupOptions, CompressionLevel, RetentionMode

# Maximum safety, more storage.
CONSERVATIVE = BackupOptions(
    compress=True,
    compression_level=CompressionLevel.SMALLEST,
    max_backups=50,
    max_age_days=90,
    max_directory_size_mb=5000,
    retention_policy=RetentionMode.SMART,
    safety_backup_before_restore=True,
    validate_after_create=True,
    min_free_disk_mb=500,
)

BALANCED = BackupOptions(
    compress=True,
    compression_level=CompressionLevel.OPTIMAL,
    max_backups=10,
    max_age_days=30,
    max_directory_size_mb=1000,
    retention_policy=RetentionMode.SMART,
    safety_backup_before_restore=True,
    validate_after_create=True,
    min_free_disk_mb=100,
)

# Least storage; no safety snapshot, so a failed restore is fatal.
MINIMAL = BackupOptions(
    compress=True,
    compression_level=CompressionLevel.SMALLEST,
    max_backups=3,
    max_age_days=7,
    max_directory_size_mb=100,
    retention_policy=RetentionMode.KEEP_LAST,
    safety_backup_before_restore=False,
    validate_after_create=False,
    min_free_disk_mb=50,
)

# Folder copies for fast create/restore cycles.
DEVELOPMENT = BackupOptions(
    compress=False,
    compression_level=CompressionLevel.FASTEST,
    max_backups=20,
    max_age_days=14,
    max_directory_size_mb=2000,
    retention_policy=RetentionMode.KEEP_LAST,
    safety_backup_before_restore=True,
    validate_after_create=False,
    min_free_disk_mb=200,
)

PRESETS: Dict[str, BackupOptions] = {
    "conservative": CONSERVATIVE,
    "balanced": BALANCED,
    "minimal": MINIMAL,
    "development": DEVELOPMENT,
}


def get_preset(name: str) -> BackupOptions:
    try:
        return PRESETS[name.strip().lower()]
    except KeyError:
        raise KeyError(f"unknown backup preset: {name}") from None


__all__ = ["BALANCED", "CONSERVATIVE", "DEVELOPMENT", "MINIMAL", "PRESETS", "get_preset"]
