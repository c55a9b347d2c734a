"""Discover snapshots in the backup directory and derive their metadata.

The file name is the only metadata carrier.  A snapshot is named from the
configured strftime template, optionally followed by ``_`` and a sanitized
description::

    backup-20240501-031500.zip
    backup-20240501-031500_nightly_run.zip      description "nightly_run"
    backup-20240501-031500-2_BeforeRestore.bak  second snapshot in that second

Parsing takes everything after the *first* ``_`` of the stem as the
description.  There is no escaping, so a template that itself contains ``_``
yields a wrong description; ``BackupOptions.validate`` warns about that.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .tree import tree_size
from .types import DESCRIPTION_SEPARATOR, SNAPSHOT_FORMAT_VERSION, SnapshotRecord

LOGGER = logging.getLogger("datasafe.backup.catalog")

COMPRESSED_EXTENSION = ".zip"
FOLDER_EXTENSION = ".bak"
PARTIAL_SUFFIX = ".partial"

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')


def sanitize_description(description: Optional[str]) -> Optional[str]:
    """Replace characters that are invalid in file names by ``_``."""

    if description is None:
        return None
    parts = [part for part in _INVALID_NAME_CHARS.split(description.strip()) if part]
    cleaned = DESCRIPTION_SEPARATOR.join(parts).strip()
    return cleaned or None


def parse_description(stem: str) -> Optional[str]:
    if DESCRIPTION_SEPARATOR not in stem:
        return None
    parts = stem.split(DESCRIPTION_SEPARATOR)
    description = DESCRIPTION_SEPARATOR.join(parts[1:])
    return description or None


def is_snapshot_path(path: Path) -> bool:
    return Path(path).suffix.lower() in (COMPRESSED_EXTENSION, FOLDER_EXTENSION)


def snapshot_name(name_format: str, when: datetime, description: Optional[str] = None) -> str:
    base = when.strftime(name_format)
    cleaned = sanitize_description(description)
    if cleaned:
        return f"{base}{DESCRIPTION_SEPARATOR}{cleaned}"
    return base


def unique_snapshot_path(
    backup_dir: Path,
    name_format: str,
    when: datetime,
    extension: str,
    description: Optional[str] = None,
) -> Path:
    """Return a snapshot path that does not exist yet.

    Collisions (two snapshots within one template tick) get ``-2``, ``-3``...
    appended to the timestamp part so the description still parses.
    """

    base = when.strftime(name_format)
    cleaned = sanitize_description(description)
    suffix = f"{DESCRIPTION_SEPARATOR}{cleaned}" if cleaned else ""
    counter = 1
    while True:
        stem = base if counter == 1 else f"{base}-{counter}"
        candidate = Path(backup_dir) / f"{stem}{suffix}{extension}"
        partial = candidate.with_name(candidate.name + PARTIAL_SUFFIX)
        if not candidate.exists() and not partial.exists():
            return candidate
        counter += 1


def _created_ns(stat_result) -> int:
    birth_ns = getattr(stat_result, "st_birthtime_ns", None)
    if birth_ns:
        return int(birth_ns)
    birth = getattr(stat_result, "st_birthtime", None)
    if birth:
        return int(birth * 1_000_000_000)
    return int(stat_result.st_mtime_ns)


def snapshot_created_at(stat_result) -> datetime:
    """Creation time as listed by the catalog: birth time, else mtime."""

    return datetime.fromtimestamp(_created_ns(stat_result) / 1_000_000_000, tz=timezone.utc)


def read_snapshot(path: Path) -> Optional[SnapshotRecord]:
    """Build a record for a single snapshot, ``None`` if it is not one."""

    path = Path(path)
    if not is_snapshot_path(path):
        return None
    try:
        st = path.stat()
    except OSError:
        return None
    is_compressed = path.suffix.lower() == COMPRESSED_EXTENSION
    if path.is_dir():
        try:
            size = tree_size(path)
        except OSError:
            size = 0
    else:
        size = st.st_size
    record = SnapshotRecord(
        path=path,
        file_name=path.name,
        created_at=snapshot_created_at(st),
        size_bytes=size,
        description=parse_description(path.stem),
        is_compressed=is_compressed,
        format_version=SNAPSHOT_FORMAT_VERSION,
    )
    return record


def _sort_key(record: SnapshotRecord) -> tuple:
    return record.created_at, record.file_name


def list_snapshots(backup_dir: Path) -> List[SnapshotRecord]:
    """Return the snapshots in *backup_dir*, newest first.

    Ordered by creation time, ties broken by file name, both descending.
    A missing directory yields an empty list.
    """

    base = Path(backup_dir)
    if not base.is_dir():
        return []
    records: List[SnapshotRecord] = []
    try:
        children = list(base.iterdir())
    except OSError as exc:
        LOGGER.warning("Cannot list backup directory %s: %s", base, exc)
        return []
    for child in children:
        record = read_snapshot(child)
        if record is not None:
            records.append(record)
    records.sort(key=_sort_key, reverse=True)
    return records


__all__ = [
    "COMPRESSED_EXTENSION",
    "FOLDER_EXTENSION",
    "PARTIAL_SUFFIX",
    "is_snapshot_path",
    "list_snapshots",
    "parse_description",
    "read_snapshot",
    "sanitize_description",
    "snapshot_created_at",
    "snapshot_name",
    "unique_snapshot_path",
]
