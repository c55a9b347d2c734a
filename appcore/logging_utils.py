"""JSON-lines log file for the ``datasafe`` logger tree."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .paths import get_logs_dir, resolve_working_dir

LOG_FILE_NAME = "datasafe.log.jsonl"

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _jsonable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, ``extra`` fields included when serialisable."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_FIELDS and not key.startswith("_") and key not in entry and _jsonable(value)
        }
        entry.update(extras)
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _level(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_json_logging(
    name: str = "datasafe",
    *,
    working_dir: Optional[Path] = None,
    level: Union[str, int] = logging.INFO,
) -> logging.Logger:
    """Attach (once) a JSON-lines file handler to logger *name*."""

    logs_dir = get_logs_dir(Path(working_dir) if working_dir is not None else resolve_working_dir())
    logs_dir.mkdir(parents=True, exist_ok=True)
    target = str((logs_dir / LOG_FILE_NAME).resolve())

    logger = logging.getLogger(name)
    logger.setLevel(_level(level))
    logger.propagate = False
    attached = any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )
    if not attached:
        handler = logging.FileHandler(target, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    return logger


__all__ = ["JsonLogFormatter", "LOG_FILE_NAME", "configure_json_logging"]
