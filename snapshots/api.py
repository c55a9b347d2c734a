"""Public API for snapshot operations."""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from appcore.paths import resolve_configured_dir, resolve_working_dir
from appcore.settings import load_settings

from .archive import build_snapshot, ensure_free_space
from .catalog import is_snapshot_path, list_snapshots, unique_snapshot_path
from .errors import (
    BackupDisabledError,
    BackupError,
    BackupIOError,
    ConfigurationError,
    CorruptionError,
    FatalInconsistentError,
)
from .logs import BackupLogger
from .restore import RestoreCoordinator
from .retention import RetentionPolicy, apply_retention
from .tree import remove_path, tree_size
from .types import (
    SAFETY_DESCRIPTION,
    BackupOptions,
    CancellationToken,
    RestoreOutcome,
    RestoreResult,
    RetentionSummary,
    SnapshotRecord,
    ValidationResult,
)
from .verify import validate_snapshot

LOGGER = logging.getLogger("datasafe.backup.service")

# Backup and restore never overlap inside one process, across service instances.
_PROCESS_LOCK = threading.Lock()

FatalAlert = Callable[[FatalInconsistentError], None]


class BackupService:
    """Coordinate snapshot creation, restore, validation and retention.

    Construct one per data directory and pass it to callers.  ``create_backup``,
    ``restore_backup``, ``delete_backup`` and ``apply_retention`` hold the
    operation lock for their whole body; the nested safety snapshot, rollback
    and pruning steps go through the lock-free ``_..._unlocked`` helpers.
    """

    def __init__(
        self,
        *,
        data_dir: Path,
        backup_dir: Path,
        options: Optional[BackupOptions] = None,
        logger: Optional[BackupLogger] = None,
        lock: Optional[threading.Lock] = None,
        on_fatal: Optional[FatalAlert] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._backup_dir = Path(backup_dir)
        self._options = options or BackupOptions()
        self._logger = logger or BackupLogger()
        self._lock = lock or _PROCESS_LOCK
        self._on_fatal = on_fatal
        self._clock = clock or datetime.now
        self._coordinator = RestoreCoordinator(
            data_dir=self._data_dir,
            options=self._options,
            logger=self._logger,
            safety_snapshot=self._take_safety_snapshot,
        )

    @classmethod
    def from_settings(
        cls,
        working_dir: Optional[Path] = None,
        settings: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> "BackupService":
        base = Path(working_dir) if working_dir is not None else resolve_working_dir()
        payload = settings if settings is not None else load_settings(base)
        database = payload.get("database") if isinstance(payload.get("database"), dict) else {}
        raw_backup = payload.get("backup") if isinstance(payload.get("backup"), dict) else {}
        options = BackupOptions.from_mapping(raw_backup)
        validation = options.validate()
        if not validation.is_valid:
            raise ConfigurationError("; ".join(validation.errors))
        for warning in validation.warnings:
            LOGGER.warning("Backup options: %s", warning)
        kwargs.setdefault("logger", BackupLogger.for_working_dir(base))
        return cls(
            data_dir=resolve_configured_dir(base, database.get("data_directory"), "data"),
            backup_dir=resolve_configured_dir(base, database.get("backup_directory"), "backups"),
            options=options,
            **kwargs,
        )

    # ------------------------------------------------------------------
    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def options(self) -> BackupOptions:
        return self._options

    def snapshot_path(self, value: str | Path) -> Path:
        """Resolve a bare snapshot name against the backup directory."""

        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            return candidate
        return self._backup_dir / candidate

    # ------------------------------------------------------------------
    def _ensure_backup_dir(self) -> Path:
        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"Cannot create backup directory: {self._backup_dir}") from exc
        return self._backup_dir

    def _create_unlocked(self, description: Optional[str], cancel: Optional[CancellationToken]) -> Path:
        backup_dir = self._ensure_backup_dir()
        ensure_free_space(backup_dir, self._options.min_free_disk_bytes)
        dest = unique_snapshot_path(
            backup_dir,
            self._options.name_format,
            self._clock(),
            self._options.extension,
            description,
        )
        path = build_snapshot(
            self._data_dir,
            dest,
            compressed=self._options.compress,
            level=self._options.compression_level,
            cancel=cancel,
        )
        if self._options.validate_after_create:
            validation = validate_snapshot(path)
            if not validation.is_valid:
                try:
                    remove_path(path)
                except OSError as exc:
                    LOGGER.warning("Could not remove invalid snapshot %s: %s", path, exc)
                raise CorruptionError(f"Snapshot {path} failed validation: {', '.join(validation.errors)}")
        return path

    def _take_safety_snapshot(self, cancel: Optional[CancellationToken]) -> Path:
        return self._create_unlocked(SAFETY_DESCRIPTION, cancel)

    def _prune_unlocked(
        self,
        policy: Optional[RetentionPolicy] = None,
        *,
        protected: Iterable[Path] = (),
    ) -> RetentionSummary:
        policy = policy or RetentionPolicy.from_options(self._options)
        return apply_retention(self._backup_dir, policy, logger=self._logger, protected=protected)

    def _is_own_snapshot(self, path: Path) -> bool:
        """True for a snapshot name directly inside the backup directory."""

        candidate = path.absolute()
        if not is_snapshot_path(candidate):
            return False
        return candidate.parent.resolve() == self._backup_dir.absolute().resolve()

    def _delete_unlocked(self, path: Path) -> bool:
        if not self._is_own_snapshot(path):
            raise ConfigurationError(f"Refusing to delete {path}: not a snapshot in {self._backup_dir}")
        if not path.exists() and not path.is_symlink():
            return False
        try:
            remove_path(path)
        except OSError as exc:
            self._logger.event(event="backup_delete_failed", phase="delete", ok=False, path=str(path), error=str(exc))
            raise BackupIOError(f"Deleting {path} failed: {exc}") from exc
        self._logger.event(event="backup_deleted", phase="delete", ok=True, path=str(path))
        return True

    # ------------------------------------------------------------------
    def create_backup(
        self,
        description: Optional[str] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Path:
        """Snapshot the data directory and prune old snapshots; return the new path."""

        with self._lock:
            if not self._options.enabled:
                self._logger.event(event="backup_failed", phase="create", ok=False, reason="disabled")
                raise BackupDisabledError("Backups are disabled")
            try:
                path = self._create_unlocked(description, cancel)
            except Exception as exc:
                self._logger.event(
                    event="backup_failed",
                    phase="create",
                    ok=False,
                    description=description,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise
            self._logger.event(
                event="backup_created",
                phase="create",
                ok=True,
                path=str(path),
                description=description,
                compressed=self._options.compress,
            )
            self._prune_unlocked(protected=[path])
            return path

    async def create_backup_async(
        self,
        description: Optional[str] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Path:
        return await asyncio.to_thread(self.create_backup, description, cancel=cancel)

    # ------------------------------------------------------------------
    def restore_backup(
        self,
        path: Path,
        validate_before_restore: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> RestoreResult:
        """Replace the data directory with the contents of snapshot *path*.

        Returns the result for a successful restore and for a failed restore
        that was rolled back (``RestoreOutcome.RESTORED_SAFETY``).  Raises
        ``ValidationRejectedError`` before touching anything when validation
        fails and ``FatalInconsistentError`` when the rollback failed too.
        """

        snapshot = Path(path)
        with self._lock:
            try:
                result = self._coordinator.restore(snapshot, validate=validate_before_restore, cancel=cancel)
            except Exception as exc:
                self._logger.event(
                    event="backup_restore_failed",
                    phase="restore",
                    ok=False,
                    path=str(snapshot),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise
            if result.outcome is RestoreOutcome.FATAL:
                self._logger.event(
                    event="backup_restore_failed",
                    phase="restore",
                    ok=False,
                    path=str(snapshot),
                    outcome=result.outcome.value,
                    error=str(result.error),
                    rollback_error=str(result.rollback_error) if result.rollback_error else None,
                )
                error = FatalInconsistentError(
                    f"Restore of {snapshot} failed and {self._data_dir} could not be rolled back",
                    original_error=result.error,
                    rollback_error=result.rollback_error,
                    safety_backup=result.safety_backup,
                )
                error.result = result
                self._alert(error)
                raise error from result.error
            if result.outcome is RestoreOutcome.RESTORED_SAFETY:
                self._logger.event(
                    event="backup_restore_failed",
                    phase="restore",
                    ok=False,
                    path=str(snapshot),
                    outcome=result.outcome.value,
                    error=str(result.error),
                    safety_backup=str(result.safety_backup),
                )
            return result

    async def restore_backup_async(
        self,
        path: Path,
        validate_before_restore: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> RestoreResult:
        return await asyncio.to_thread(self.restore_backup, path, validate_before_restore, cancel=cancel)

    def _alert(self, error: FatalInconsistentError) -> None:
        if self._on_fatal is None:
            return
        try:
            self._on_fatal(error)
        except Exception:
            LOGGER.exception("Fatal restore alert hook failed")

    # ------------------------------------------------------------------
    def get_available_backups(self) -> List[SnapshotRecord]:
        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Backup directory %s unavailable: %s", self._backup_dir, exc)
        return list_snapshots(self._backup_dir)

    def validate_backup(self, path: Path) -> ValidationResult:
        result = validate_snapshot(Path(path))
        self._logger.event(
            event="backup_validated",
            phase="verify",
            ok=result.is_valid,
            path=str(path),
            errors=result.errors,
            warnings=result.warnings,
        )
        return result

    def delete_backup(self, path: Path) -> bool:
        """Delete a snapshot; returns ``False`` when it was already gone."""

        with self._lock:
            return self._delete_unlocked(Path(path))

    def get_backup_directory_size(self) -> int:
        try:
            if not self._backup_dir.exists():
                return 0
            return tree_size(self._backup_dir)
        except (OSError, BackupError):
            return 0

    def apply_retention(self, policy: Optional[RetentionPolicy] = None) -> RetentionSummary:
        with self._lock:
            return self._prune_unlocked(policy)


__all__ = ["BackupService", "FatalAlert"]
