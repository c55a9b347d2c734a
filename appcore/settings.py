from __future__ import annotations

import copy
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

LOGGER = logging.getLogger("datasafe.settings")

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "database": {
        "data_directory": "data",
        "backup_directory": "backups",
    },
    "backup": {
        "enable": True,
        "compress": True,
        "compression_level": "optimal",
        "max_backups": 10,
        "max_age_days": 30,
        "max_directory_size_mb": 1000,
        "name_format": "backup-%Y%m%d-%H%M%S",
        "retention_policy": "keep_last",
        "safety_backup_before_restore": True,
        "validate_after_create": True,
        "min_free_disk_mb": 100,
    },
    "logging": {
        "level": "INFO",
        "json_file": True,
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8757,
        "api_key": None,
    },
}

# Version 0 files used PascalCase sections and keys.
_LEGACY_SECTIONS = {"Database": "database", "Backup": "backup"}
_LEGACY_KEYS = {
    "database": {
        "DataDirectory": "data_directory",
        "BackupDirectory": "backup_directory",
    },
    "backup": {
        "Enabled": "enable",
        "CompressBackups": "compress",
        "MaxBackupCount": "max_backups",
        "MaxBackups": "max_backups",
        "RetentionDays": "max_age_days",
    },
}
_LEGACY_DROPPED = {"BackupNameFormat", "EnableAutoCleanup", "AutoBackupInterval", "AutoBackupIntervalHours"}


def _overlay(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict):
            if isinstance(value, Mapping):
                _overlay(current, value)
            continue
        target[key] = copy.deepcopy(value)


def merge_defaults(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return ``DEFAULT_SETTINGS`` with *data* laid over it.

    Unknown keys are carried through; a non-mapping value where a section is
    expected leaves that section at its defaults.
    """

    merged = copy.deepcopy(DEFAULT_SETTINGS)
    _overlay(merged, data or {})
    return merged


def _migrate_v0(payload: Dict[str, Any]) -> Dict[str, Any]:
    for legacy, section in _LEGACY_SECTIONS.items():
        block = payload.pop(legacy, None)
        if isinstance(block, Mapping):
            payload.setdefault(section, {}).update(block)
    for section, renames in _LEGACY_KEYS.items():
        block = payload.get(section)
        if not isinstance(block, dict):
            continue
        for old, new in renames.items():
            if old in block:
                block.setdefault(new, block.pop(old))
        for old in _LEGACY_DROPPED & set(block):
            LOGGER.info("Dropping legacy setting %s.%s=%r", section, old, block.pop(old))
    return payload


def _apply_migrations(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        version = int(payload.get("version") or 0)
    except (TypeError, ValueError):
        version = 0
    if version < 1:
        payload = _migrate_v0(payload)
    payload["version"] = SETTINGS_VERSION
    return payload


def _report_unknown_keys(settings: Mapping[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Unknown settings keys: %s", ", ".join(unknown))
    target = get_logs_dir(working_dir) / "settings_unknown.json"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps({"ts": time.time(), "unknown": unknown}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        LOGGER.debug("Could not write %s: %s", target, exc)


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        LOGGER.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return None
    return loaded if isinstance(loaded, dict) else None


def load_settings(working_dir: Path) -> Dict[str, Any]:
    """Load the first readable settings file, migrated and merged with defaults."""

    working_dir = Path(working_dir)
    raw: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        loaded = _read_json(candidate)
        if loaded is not None:
            raw = loaded
            break
    settings = merge_defaults(_apply_migrations(raw))
    settings.setdefault("working_dir", str(working_dir))
    _report_unknown_keys(settings, working_dir)
    return settings


def save_settings(settings: Mapping[str, Any], working_dir: Path) -> Path:
    working_dir = Path(working_dir)
    payload = merge_defaults(_apply_migrations(copy.deepcopy(dict(settings))))
    payload.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".partial")
    partial.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(partial, path)
    return path


def update_settings(working_dir: Path, **values: Any) -> Dict[str, Any]:
    """Merge *values* section by section into the stored settings."""

    current = load_settings(working_dir)
    _overlay(current, values)
    save_settings(current, working_dir)
    return current
