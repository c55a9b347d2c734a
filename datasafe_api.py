"""Launch the datasafe backup HTTP API on a loopback address."""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app, is_local_client
from appcore.logging_utils import configure_json_logging
from appcore.paths import resolve_working_dir
from appcore.settings import load_settings
from snapshots.api import BackupService
from snapshots.errors import ConfigurationError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8757
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]

LOGGER = logging.getLogger("datasafe.api")


@dataclass(slots=True)
class LaunchPlan:
    host: str
    port: int
    api_key: Optional[str]
    service: BackupService
    cors_origins: List[str] = field(default_factory=list)


def loopback_bind_host(value: Optional[str]) -> str:
    """Normalise *value* to a loopback bind address or raise ``ValueError``."""

    host = (value or "").strip() or DEFAULT_HOST
    if host.lower() in {"localhost", "::1", "[::1]", "::ffff:127.0.0.1"}:
        return DEFAULT_HOST
    if host == "testclient" or not is_local_client(host):
        raise ValueError(f"Refusing to bind to non-loopback host {host!r}; the API only serves localhost.")
    return host


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="datasafe-api", description="Serve the datasafe backup API locally.")
    parser.add_argument("--working-dir", type=Path, help="Working directory holding settings.json")
    parser.add_argument("--host", help="Loopback address to bind (settings: api.host)")
    parser.add_argument("--port", type=int, help="Port to bind (settings: api.port)")
    parser.add_argument("--api-key", dest="api_key", help="API key for this session only")
    parser.add_argument("--cors", action="append", metavar="ORIGIN", help="Allowed CORS origin, repeatable")
    return parser


def _section(settings: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = settings.get(name)
    return value if isinstance(value, dict) else {}


def plan_launch(args: argparse.Namespace) -> LaunchPlan:
    working_dir = args.working_dir or resolve_working_dir()
    settings = load_settings(working_dir)
    api_cfg = _section(settings, "api")
    log_cfg = _section(settings, "logging")

    if log_cfg.get("json_file", True):
        configure_json_logging(working_dir=working_dir, level=str(log_cfg.get("level") or "INFO"))

    try:
        port = int(args.port or api_cfg.get("port") or DEFAULT_PORT)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid api.port %r; using %s", api_cfg.get("port"), DEFAULT_PORT)
        port = DEFAULT_PORT

    return LaunchPlan(
        host=loopback_bind_host(args.host or api_cfg.get("host")),
        port=port,
        api_key=args.api_key or api_cfg.get("api_key"),
        service=BackupService.from_settings(working_dir, settings),
        cors_origins=list(args.cors or api_cfg.get("cors_origins") or DEFAULT_CORS),
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = build_parser().parse_args(argv)
    try:
        plan = plan_launch(args)
    except (ValueError, ConfigurationError) as exc:
        LOGGER.error("%s", exc)
        return 2
    if not plan.api_key:
        LOGGER.warning("No API key configured; every request will be answered with 401.")

    app = create_app(
        APIServerConfig(
            service=plan.service,
            api_key=plan.api_key,
            cors_origins=plan.cors_origins,
            app_version=API_VERSION,
        )
    )
    LOGGER.info("Serving on http://%s:%s", plan.host, plan.port)
    uvicorn.Server(uvicorn.Config(app, host=plan.host, port=plan.port, log_level="info", access_log=False)).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
