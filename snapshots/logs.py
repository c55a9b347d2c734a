"""Structured event log for snapshot operations."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from appcore.paths import get_logs_dir

LOGGER = logging.getLogger("datasafe.backup")

EVENT_LOG_NAME = "backup.jsonl"


class BackupLogger:
    """Append one JSON object per backup event to ``logs/backup.jsonl``.

    Each record is also passed to the ``datasafe.backup`` logger, so audit,
    notification and health consumers can subscribe with ordinary handlers.
    Without a *log_path* only the logger sees the records.
    """

    def __init__(self, log_path: Optional[Path] = None) -> None:
        self._path = None if log_path is None else Path(log_path)
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @classmethod
    def for_working_dir(cls, working_dir: Path) -> "BackupLogger":
        return cls(get_logs_dir(Path(working_dir)) / EVENT_LOG_NAME)

    @property
    def log_path(self) -> Optional[Path]:
        return self._path

    def emit(self, level: int, record: Dict[str, Any]) -> None:
        stamped = {"ts": datetime.now(timezone.utc).isoformat(), **record}
        text = json.dumps(stamped, sort_keys=True, default=str)
        if self._path is not None:
            try:
                with self._lock, self._path.open("a", encoding="utf-8") as stream:
                    stream.write(text + "\n")
            except OSError as exc:
                LOGGER.warning("Could not append to %s: %s", self._path, exc)
        LOGGER.log(level, "%s", text)

    # Phase-tagged outcome of a create/restore/delete/prune step.
    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        self.emit(logging.INFO if ok else logging.ERROR, {**extra, "event": event, "phase": phase, "ok": bool(ok)})

    def info(self, event: str, **extra: Any) -> None:
        self.emit(logging.INFO, {**extra, "event": event, "ok": True})

    def warning(self, event: str, **extra: Any) -> None:
        self.emit(logging.WARNING, {**extra, "event": event, "ok": False})

    def error(self, event: str, **extra: Any) -> None:
        self.emit(logging.ERROR, {**extra, "event": event, "ok": False})

    def critical(self, event: str, **extra: Any) -> None:
        self.emit(logging.CRITICAL, {**extra, "event": event, "ok": False})


__all__ = ["BackupLogger", "EVENT_LOG_NAME"]
