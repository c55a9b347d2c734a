"""FastAPI router exposing snapshot operations."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel, Field

from .api import BackupService
from .errors import (
    BackupError,
    ConfigurationError,
    FatalInconsistentError,
    InsufficientSpaceError,
    SourceMissingError,
    ValidationRejectedError,
)
from .retention import RetentionPolicy
from .types import RestoreOutcome, RetentionMode, format_size

LOGGER = logging.getLogger("datasafe.api.backups")


class CreateBackupRequest(BaseModel):
    description: Optional[str] = Field(default=None, description="Free text appended to the file name")


class RestoreBackupRequest(BaseModel):
    path: str = Field(..., description="Snapshot path or file name inside the backup directory")
    validate_before_restore: bool = Field(default=True)


class ValidateBackupRequest(BaseModel):
    path: str


class PruneRequest(BaseModel):
    mode: Optional[str] = Field(default=None, description="Override the configured retention mode")
    keep_last: Optional[int] = Field(default=None, ge=0)
    max_age_days: Optional[int] = Field(default=None, ge=0)
    max_size_mb: Optional[int] = Field(default=None, ge=0)


def _status_for(exc: BackupError) -> int:
    if isinstance(exc, SourceMissingError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationRejectedError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, InsufficientSpaceError):
        return status.HTTP_507_INSUFFICIENT_STORAGE
    if isinstance(exc, ConfigurationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(exc: BackupError) -> HTTPException:
    code = _status_for(exc)
    if code >= 500:
        LOGGER.error("Backup request failed: %s", exc)
    return HTTPException(status_code=code, detail=str(exc))


class BackupRoutes:
    """Router helper for backup REST endpoints."""

    def __init__(self, service: BackupService) -> None:
        self.service = service

    def _policy(self, request: PruneRequest) -> Optional[RetentionPolicy]:
        overrides = (request.mode, request.keep_last, request.max_age_days, request.max_size_mb)
        if all(value is None for value in overrides):
            return None
        base = RetentionPolicy.from_options(self.service.options)
        try:
            mode = RetentionMode(request.mode.strip().lower()) if request.mode else base.mode
        except ValueError:
            raise HTTPException(status_code=400, detail=f"unknown retention mode: {request.mode}") from None
        return RetentionPolicy(
            mode=mode,
            keep_last=base.keep_last if request.keep_last is None else request.keep_last,
            max_age_days=base.max_age_days if request.max_age_days is None else request.max_age_days,
            max_total_bytes=(
                base.max_total_bytes if request.max_size_mb is None else request.max_size_mb * 1024 * 1024
            ),
        )

    def router(self, dependencies: Optional[Sequence[Any]] = None) -> APIRouter:
        router = APIRouter(prefix="/v1/backups", tags=["backups"], dependencies=list(dependencies or []))
        service = self.service

        @router.get("")
        def list_backups_endpoint() -> List[Dict[str, Any]]:
            return [record.to_dict() for record in service.get_available_backups()]

        @router.post("", status_code=status.HTTP_201_CREATED)
        def create_backup_endpoint(request: CreateBackupRequest) -> Dict[str, Any]:
            try:
                path = service.create_backup(request.description)
            except BackupError as exc:
                raise _http_error(exc) from exc
            return {"ok": True, "path": str(path), "file_name": path.name}

        @router.post("/restore")
        def restore_backup_endpoint(request: RestoreBackupRequest, response: Response) -> Dict[str, Any]:
            snapshot = service.snapshot_path(request.path)
            try:
                result = service.restore_backup(snapshot, request.validate_before_restore)
            except ValidationRejectedError as exc:
                detail = exc.validation.errors if exc.validation is not None else [str(exc)]
                raise HTTPException(status_code=409, detail="; ".join(detail)) from exc
            except FatalInconsistentError as exc:
                LOGGER.critical("Restore left the data directory inconsistent: %s", exc)
                response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
                payload = exc.result.to_dict() if exc.result is not None else {}
                return {"ok": False, **payload, "error": str(exc)}
            except BackupError as exc:
                raise _http_error(exc) from exc
            if result.outcome is RestoreOutcome.RESTORED_SAFETY:
                response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            return {"ok": result.ok, **result.to_dict()}

        @router.post("/validate")
        def validate_backup_endpoint(request: ValidateBackupRequest) -> Dict[str, Any]:
            return service.validate_backup(service.snapshot_path(request.path)).to_dict()

        @router.delete("")
        def delete_backup_endpoint(path: str) -> Dict[str, Any]:
            target = service.snapshot_path(path)
            try:
                deleted = service.delete_backup(target)
            except BackupError as exc:
                raise _http_error(exc) from exc
            return {"deleted": deleted, "path": str(target)}

        @router.get("/size")
        def backup_size_endpoint() -> Dict[str, Any]:
            size = service.get_backup_directory_size()
            return {"bytes": size, "formatted": format_size(size), "directory": str(service.backup_dir)}

        @router.post("/prune")
        def prune_endpoint(request: Optional[PruneRequest] = None) -> Dict[str, Any]:
            policy = self._policy(request or PruneRequest())
            summary = service.apply_retention(policy)
            return {
                "removed": summary.removed,
                "kept": summary.kept,
                "failed": summary.failed,
                "freed_bytes": summary.freed_bytes,
            }

        return router


__all__ = [
    "BackupRoutes",
    "CreateBackupRequest",
    "PruneRequest",
    "RestoreBackupRequest",
    "ValidateBackupRequest",
]
