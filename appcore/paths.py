from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional

__all__ = [
    "get_default_settings_paths",
    "get_logs_dir",
    "resolve_configured_dir",
    "resolve_working_dir",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_HOME_ENV = "DATASAFE_HOME"
_FALLBACK_NAME = ".datasafe"


def _expand(value: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(value)))


def _usable_dir(candidate: Path) -> Optional[Path]:
    """Return *candidate* if it can be created and written to."""

    try:
        candidate.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=candidate):
            pass
    except OSError:
        return None
    return candidate


def _project_working_dir() -> Optional[str]:
    try:
        payload = json.loads((_PROJECT_ROOT / "settings.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    value = payload.get("working_dir") if isinstance(payload, dict) else None
    if isinstance(value, str) and value.strip():
        return value
    return None


def _candidates() -> Iterator[Path]:
    env_home = os.environ.get(_HOME_ENV)
    if env_home:
        yield _expand(env_home).resolve()
    configured = _project_working_dir()
    if configured:
        yield _expand(configured).resolve()


def resolve_working_dir() -> Path:
    """Resolve the datasafe working directory, creating it if required.

    ``DATASAFE_HOME`` wins, then ``working_dir`` from a settings.json next to
    the project, then ``~/.datasafe``.  Unwritable candidates are skipped.
    """

    for candidate in _candidates():
        usable = _usable_dir(candidate)
        if usable is not None:
            return usable
    fallback = Path.home() / _FALLBACK_NAME
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_configured_dir(working_dir: Path, value: Optional[str], default: str) -> Path:
    """Resolve a directory setting, relative values are anchored at *working_dir*."""

    text = (value or "").strip() or default
    candidate = _expand(text)
    if not candidate.is_absolute():
        candidate = Path(working_dir) / candidate
    return candidate


def get_logs_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "logs"


def get_default_settings_paths(working_dir: Path) -> List[Path]:
    """Return the search order for settings.json files."""

    return [Path(working_dir) / "settings.json", _PROJECT_ROOT / "settings.json"]
