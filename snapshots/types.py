"""Common dataclasses shared across snapshot modules."""
from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_NAME_FORMAT = "backup-%Y%m%d-%H%M%S"
DESCRIPTION_SEPARATOR = "_"
SAFETY_DESCRIPTION = "BeforeRestore"
SNAPSHOT_FORMAT_VERSION = "1.0"

_BYTES_PER_MB = 1024 * 1024


class CompressionLevel(str, Enum):
    NONE = "none"
    FASTEST = "fastest"
    OPTIMAL = "optimal"
    SMALLEST = "smallest"


class RetentionMode(str, Enum):
    KEEP_ALL = "keep_all"
    KEEP_LAST = "keep_last"
    KEEP_BY_AGE = "keep_by_age"
    KEEP_BY_SIZE = "keep_by_size"
    SMART = "smart"


class RestoreState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SAFETY_BACKUP_CREATED = "safety_backup_created"
    CLEARING = "clearing"
    EXTRACTING = "extracting"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    RESTORED_SAFETY = "restored_safety"
    FATAL_INCONSISTENT = "fatal_inconsistent"


class RestoreOutcome(str, Enum):
    SUCCESS = "success"
    RESTORED_SAFETY = "restored_safety"
    FATAL = "fatal"


def _parse_enum(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    token = str(value).strip().lower()
    for member in enum_cls:
        if token in (member.value, member.name.lower()):
            return member
    raise ConfigurationError(f"unknown {enum_cls.__name__} value: {value!r}")


def format_size(num_bytes: int) -> str:
    sizes = ("B", "KB", "MB", "GB")
    value = float(num_bytes)
    order = 0
    while value >= 1024 and order < len(sizes) - 1:
        order += 1
        value /= 1024
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {sizes[order]}"


class CancellationToken:
    def __init__(self) -> None:
        self._evt = threading.Event()

    def set(self) -> None:
        self._evt.set()

    def is_set(self) -> bool:
        return self._evt.is_set()

    def wait(self, timeout: float) -> bool:
        return self._evt.wait(timeout)


@dataclass(slots=True)
class OptionsValidation:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


@dataclass(frozen=True, slots=True)
class BackupOptions:
    """Per-run configuration for creating, restoring and pruning snapshots."""

    enabled: bool = True
    compress: bool = True
    compression_level: CompressionLevel = CompressionLevel.OPTIMAL
    max_backups: int = 10
    max_age_days: int = 30
    max_directory_size_mb: int = 1000
    name_format: str = DEFAULT_NAME_FORMAT
    retention_policy: RetentionMode = RetentionMode.KEEP_LAST
    safety_backup_before_restore: bool = True
    validate_after_create: bool = True
    min_free_disk_mb: int = 100

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object] | None) -> "BackupOptions":
        data = dict(mapping or {})
        defaults = cls()
        try:
            return cls(
                enabled=bool(data.get("enable", data.get("enabled", defaults.enabled))),
                compress=bool(data.get("compress", defaults.compress)),
                compression_level=_parse_enum(
                    CompressionLevel, data.get("compression_level"), defaults.compression_level
                ),
                max_backups=int(data.get("max_backups", defaults.max_backups) or 0),
                max_age_days=int(data.get("max_age_days", defaults.max_age_days) or 0),
                max_directory_size_mb=int(data.get("max_directory_size_mb", defaults.max_directory_size_mb) or 0),
                name_format=str(data.get("name_format") or defaults.name_format),
                retention_policy=_parse_enum(RetentionMode, data.get("retention_policy"), defaults.retention_policy),
                safety_backup_before_restore=bool(
                    data.get("safety_backup_before_restore", defaults.safety_backup_before_restore)
                ),
                validate_after_create=bool(data.get("validate_after_create", defaults.validate_after_create)),
                min_free_disk_mb=int(data.get("min_free_disk_mb", defaults.min_free_disk_mb) or 0),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid backup options: {exc}") from exc

    def with_overrides(self, **kwargs: object) -> "BackupOptions":
        payload = self.to_dict()
        payload.update(kwargs)
        return BackupOptions.from_mapping(payload)

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["compression_level"] = self.compression_level.value
        payload["retention_policy"] = self.retention_policy.value
        return payload

    @property
    def max_directory_size_bytes(self) -> int:
        return int(self.max_directory_size_mb) * _BYTES_PER_MB

    @property
    def min_free_disk_bytes(self) -> int:
        return int(self.min_free_disk_mb) * _BYTES_PER_MB

    @property
    def extension(self) -> str:
        return ".zip" if self.compress else ".bak"

    def validate(self) -> OptionsValidation:
        result = OptionsValidation()
        if self.max_backups < 0:
            result.add_error("max_backups cannot be negative")
        if self.max_age_days < 0:
            result.add_error("max_age_days cannot be negative")
        if self.max_directory_size_mb < 0:
            result.add_error("max_directory_size_mb cannot be negative")
        if self.min_free_disk_mb < 0:
            result.add_error("min_free_disk_mb cannot be negative")

        if not self.name_format.strip():
            result.add_error("name_format cannot be empty")
        else:
            try:
                rendered = datetime.now().strftime(self.name_format)
            except ValueError:
                rendered = ""
                result.add_error("name_format contains an invalid format string")
            if "/" in rendered or "\\" in rendered:
                result.add_error("name_format must not produce path separators")
            if DESCRIPTION_SEPARATOR in rendered:
                result.warnings.append(
                    f"name_format contains '{DESCRIPTION_SEPARATOR}'; descriptions will be mis-parsed from file names"
                )

        if self.retention_policy is RetentionMode.KEEP_LAST and self.max_backups == 0:
            result.warnings.append("keep_last retention with max_backups=0 will keep unlimited backups")
        if self.retention_policy is RetentionMode.KEEP_BY_AGE and self.max_age_days == 0:
            result.warnings.append("keep_by_age retention with max_age_days=0 will keep all backups")
        if self.retention_policy is RetentionMode.KEEP_BY_SIZE and self.max_directory_size_mb == 0:
            result.warnings.append("keep_by_size retention with max_directory_size_mb=0 has no size limit")
        return result


@dataclass(slots=True)
class SnapshotRecord:
    path: Path
    file_name: str
    created_at: datetime
    size_bytes: int
    description: Optional[str]
    is_compressed: bool
    format_version: str = SNAPSHOT_FORMAT_VERSION

    @property
    def age(self) -> timedelta:
        return datetime.now(timezone.utc) - self.created_at

    @property
    def size_formatted(self) -> str:
        return format_size(self.size_bytes)

    @property
    def is_safety(self) -> bool:
        return self.description == SAFETY_DESCRIPTION

    def to_dict(self) -> Dict[str, object]:
        return {
            "path": str(self.path),
            "file_name": self.file_name,
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "size": self.size_formatted,
            "description": self.description,
            "is_compressed": self.is_compressed,
            "is_safety": self.is_safety,
            "format_version": self.format_version,
        }


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)

    def to_dict(self) -> Dict[str, object]:
        metadata = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in self.metadata.items()
        }
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": metadata,
        }


@dataclass(slots=True)
class RestoreResult:
    """Outcome of a restore; ``RESTORED_SAFETY`` means the requested restore failed."""

    outcome: RestoreOutcome
    snapshot: Path
    data_dir: Path
    safety_backup: Optional[Path] = None
    error: Optional[BaseException] = None
    rollback_error: Optional[BaseException] = None
    states: List[RestoreState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is RestoreOutcome.SUCCESS

    def to_dict(self) -> Dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "snapshot": str(self.snapshot),
            "data_dir": str(self.data_dir),
            "safety_backup": str(self.safety_backup) if self.safety_backup else None,
            "error": str(self.error) if self.error else None,
            "rollback_error": str(self.rollback_error) if self.rollback_error else None,
            "states": [state.value for state in self.states],
        }


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str]
    kept: List[str]
    freed_bytes: int
    failed: List[str] = field(default_factory=list)


__all__ = [
    "BackupOptions",
    "CancellationToken",
    "CompressionLevel",
    "DEFAULT_NAME_FORMAT",
    "DESCRIPTION_SEPARATOR",
    "OptionsValidation",
    "RestoreOutcome",
    "RestoreResult",
    "RestoreState",
    "RetentionMode",
    "RetentionSummary",
    "SAFETY_DESCRIPTION",
    "SNAPSHOT_FORMAT_VERSION",
    "SnapshotRecord",
    "ValidationResult",
    "format_size",
]
