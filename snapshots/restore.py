"""Restore snapshots safely with automatic rollback."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional

from .archive import extract_snapshot
from .errors import BackupIOError, ConfigurationError, SourceMissingError, ValidationRejectedError
from .logs import BackupLogger
from .tree import clear_directory, is_within
from .types import (
    BackupOptions,
    CancellationToken,
    RestoreOutcome,
    RestoreResult,
    RestoreState,
)
from .verify import validate_snapshot

SafetySnapshotFactory = Callable[[Optional[CancellationToken]], Path]


def _clear(data_dir: Path) -> None:
    try:
        clear_directory(data_dir)
    except OSError as exc:
        raise BackupIOError(f"Clearing {data_dir} failed: {exc}") from exc


class RestoreCoordinator:
    """Drive one restore through validate, safety snapshot, clear and extract.

    Any failure after the live directory was touched rolls back by restoring
    the safety snapshot through the same path, with validation and a second
    safety snapshot disabled.  The result says whether the requested restore
    succeeded, was rolled back, or left the directory in an unknown state.
    The coordinator takes no locks; callers serialize it.
    """

    def __init__(
        self,
        *,
        data_dir: Path,
        options: BackupOptions,
        logger: BackupLogger,
        safety_snapshot: SafetySnapshotFactory,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._options = options
        self._logger = logger
        self._safety_snapshot = safety_snapshot

    # ------------------------------------------------------------------
    def restore(
        self,
        snapshot: Path,
        *,
        validate: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> RestoreResult:
        snapshot = Path(snapshot)
        if is_within(snapshot, self._data_dir):
            raise ConfigurationError(f"Cannot restore {snapshot}: it lies inside the data directory {self._data_dir}")
        return self._restore(
            snapshot,
            validate=validate,
            take_safety=self._options.safety_backup_before_restore,
            cancel=cancel,
            states=[RestoreState.IDLE],
        )

    # ------------------------------------------------------------------
    def _restore(
        self,
        snapshot: Path,
        *,
        validate: bool,
        take_safety: bool,
        cancel: Optional[CancellationToken],
        states: List[RestoreState],
        rolling_back: bool = False,
    ) -> RestoreResult:
        if not snapshot.exists():
            raise SourceMissingError(f"Backup file not found: {snapshot}")

        if validate:
            states.append(RestoreState.VALIDATING)
            validation = validate_snapshot(snapshot)
            if not validation.is_valid:
                self._logger.error("restore_rejected", path=str(snapshot), errors=validation.errors)
                raise ValidationRejectedError(
                    f"Backup validation failed: {', '.join(validation.errors)}",
                    validation=validation,
                )

        safety: Optional[Path] = None
        if take_safety:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            safety = self._safety_snapshot(cancel)
            states.append(RestoreState.SAFETY_BACKUP_CREATED)
            self._logger.info("safety_backup_created", path=str(safety), restoring=str(snapshot))

        try:
            states.append(RestoreState.CLEARING)
            _clear(self._data_dir)
            states.append(RestoreState.EXTRACTING)
            extract_snapshot(snapshot, self._data_dir, cancel=cancel)
        except Exception as exc:
            if rolling_back:
                # The outer restore owns the report for this incident.
                states.append(RestoreState.FATAL_INCONSISTENT)
                return RestoreResult(
                    outcome=RestoreOutcome.FATAL,
                    snapshot=snapshot,
                    data_dir=self._data_dir,
                    error=exc,
                    states=states,
                )
            return self._roll_back(snapshot, safety, exc, states)

        states.append(RestoreState.DONE)
        self._logger.event(
            event="safety_backup_restored" if rolling_back else "backup_restored",
            phase="restore",
            ok=True,
            path=str(snapshot),
            safety_backup=str(safety) if safety else None,
        )
        return RestoreResult(
            outcome=RestoreOutcome.SUCCESS,
            snapshot=snapshot,
            data_dir=self._data_dir,
            safety_backup=safety,
            states=states,
        )

    def _roll_back(
        self,
        snapshot: Path,
        safety: Optional[Path],
        error: Exception,
        states: List[RestoreState],
    ) -> RestoreResult:
        states.append(RestoreState.ROLLING_BACK)
        rollback_error: Optional[BaseException] = None
        if safety is not None:
            try:
                rollback = self._restore(
                    safety,
                    validate=False,
                    take_safety=False,
                    cancel=None,
                    states=[RestoreState.IDLE],
                    rolling_back=True,
                )
            except Exception as exc:
                rollback_error = exc
            else:
                rollback_error = rollback.error

        self._logger.error(
            "restore_failed",
            path=str(snapshot),
            error=str(error),
            safety_backup=str(safety) if safety else None,
        )
        if safety is not None and rollback_error is None:
            states.append(RestoreState.RESTORED_SAFETY)
            return RestoreResult(
                outcome=RestoreOutcome.RESTORED_SAFETY,
                snapshot=snapshot,
                data_dir=self._data_dir,
                safety_backup=safety,
                error=error,
                states=states,
            )

        states.append(RestoreState.FATAL_INCONSISTENT)
        self._logger.critical(
            "restore_fatal",
            path=str(snapshot),
            data_dir=str(self._data_dir),
            error=str(error),
            rollback_error=str(rollback_error) if rollback_error else "no safety snapshot",
            safety_backup=str(safety) if safety else None,
        )
        return RestoreResult(
            outcome=RestoreOutcome.FATAL,
            snapshot=snapshot,
            data_dir=self._data_dir,
            safety_backup=safety,
            error=error,
            rollback_error=rollback_error,
            states=states,
        )


__all__ = ["RestoreCoordinator", "SafetySnapshotFactory"]
