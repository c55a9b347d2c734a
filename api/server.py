"""FastAPI application exposing snapshot operations over loopback HTTP."""
from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from snapshots.api import BackupService
from snapshots.routes import BackupRoutes

from .auth import APIKeyAuth

LOGGER = logging.getLogger("datasafe.api")

# Starlette's TestClient reports this as the peer host.
_LOCAL_NAMES = frozenset({"localhost", "testclient"})


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    service: BackupService
    api_key: Optional[str]
    cors_origins: Sequence[str] = field(default_factory=list)
    app_version: str = "dev"
    lan_only: bool = True


def is_local_client(host: Optional[str]) -> bool:
    """Return True when *host* names this machine.

    An absent peer (unix socket, in-process transport) counts as local.
    """

    text = (host or "").strip().strip("[]").lower()
    if not text:
        return True
    if text in _LOCAL_NAMES:
        return True
    text = text.split("%", 1)[0]
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return False
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped
    return address.is_loopback


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _install_request_log(app: FastAPI, *, lan_only: bool) -> None:
    @app.middleware("http")
    async def request_log(request: Request, call_next):  # type: ignore[override]
        peer = request.client.host if request.client else None
        started = time.perf_counter()
        if lan_only and not is_local_client(peer):
            LOGGER.warning("Rejected request from non-local client %s", peer)
            response = _error(status.HTTP_403_FORBIDDEN, "LAN access disabled")
        else:
            response = await call_next(request)
        LOGGER.info(
            "%s %s -> %s (%.1f ms) ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            peer or "-",
        )
        return response


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def on_http_error(_request: Request, exc: HTTPException):
        return _error(exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(_request: Request, exc: RequestValidationError):
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "invalid parameters",
            details=jsonable_encoder(exc.errors()),
        )


def create_app(config: APIServerConfig) -> FastAPI:
    """Build the application: health check plus the ``/v1/backups`` routes."""

    app = FastAPI(title="Datasafe Local API", version=config.app_version)

    origins = [origin for origin in config.cors_origins if origin]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )
    _install_request_log(app, lan_only=bool(config.lan_only))
    _install_error_handlers(app)

    service = config.service
    guard = Depends(APIKeyAuth(config.api_key))

    @app.get("/v1/health", dependencies=[guard])
    def health() -> dict:
        return {
            "ok": True,
            "version": config.app_version,
            "data_dir": str(service.data_dir),
            "backup_dir": str(service.backup_dir),
            "backups_enabled": service.options.enabled,
        }

    app.include_router(BackupRoutes(service).router(dependencies=[guard]))
    return app


__all__ = ["APIServerConfig", "create_app", "is_local_client"]
