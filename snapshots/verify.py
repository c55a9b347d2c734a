"""Structural validation of snapshots without restoring them."""
from __future__ import annotations

import zipfile
import zlib
from datetime import datetime, timezone
from pathlib import Path

from .archive import SNAPSHOT_MARKER_PREFIX
from .catalog import COMPRESSED_EXTENSION, snapshot_created_at
from .tree import iter_entries
from .types import ValidationResult

DATA_FILE_EXTENSIONS = (".json", ".db")

NO_DATA_FILES_WARNING = "Backup may not contain data files"


def _has_data_file(names) -> bool:
    return any(name.lower().endswith(DATA_FILE_EXTENSIONS) for name in names)


def _timestamps(path: Path, result: ValidationResult) -> None:
    st = path.stat()
    result.metadata["created_at"] = snapshot_created_at(st)
    result.metadata["last_modified"] = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def _validate_archive(path: Path, result: ValidationResult) -> None:
    size = path.stat().st_size
    try:
        with zipfile.ZipFile(path, "r") as archive:
            infos = archive.infolist()
            marker = archive.comment
            bad_member = archive.testzip()
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError):
        bad_member = ""
    if bad_member is not None:
        result.add_error("Backup archive is corrupted")
        return
    result.metadata["entry_count"] = len(infos)
    result.metadata["compressed_size"] = size
    result.metadata["uncompressed_size"] = sum(info.file_size for info in infos)
    if marker.startswith(SNAPSHOT_MARKER_PREFIX):
        result.metadata["format_version"] = marker[len(SNAPSHOT_MARKER_PREFIX) :].decode("ascii", "replace")
    if not infos and not marker.startswith(SNAPSHOT_MARKER_PREFIX):
        result.add_error("Backup archive is empty")
        return
    files = [info.filename for info in infos if not info.is_dir()]
    if not _has_data_file(files):
        result.warnings.append(NO_DATA_FILES_WARNING)


def _validate_folder(path: Path, result: ValidationResult) -> None:
    if not path.is_dir():
        result.add_error("Backup folder is not a directory")
        return
    file_count = 0
    total = 0
    names = []
    for entry, relative, is_dir in iter_entries(path):
        if is_dir:
            continue
        file_count += 1
        total += entry.stat().st_size
        names.append(relative)
    result.metadata["entry_count"] = file_count
    result.metadata["uncompressed_size"] = total
    if not _has_data_file(names):
        result.warnings.append(NO_DATA_FILES_WARNING)


def validate_snapshot(path: Path) -> ValidationResult:
    """Check that *path* is a readable snapshot.

    Rules run in order and stop at the first hard failure: the snapshot
    must exist, must not be a zero-length file, and a zip archive must open,
    pass CRC checks and hold at least one entry.  An archive carrying the
    snapshot marker may be empty; it was taken from an empty data directory.
    A snapshot without any ``.json``/``.db`` entry only gets a warning.
    """

    result = ValidationResult(is_valid=True)
    path = Path(path)
    try:
        if not path.exists():
            result.add_error("Backup file does not exist")
            return result
        if path.is_file() and path.stat().st_size == 0:
            result.add_error("Backup file is empty")
            return result

        if path.suffix.lower() == COMPRESSED_EXTENSION and path.is_file():
            _validate_archive(path, result)
        else:
            _validate_folder(path, result)

        if path.is_file():
            result.metadata["file_size"] = path.stat().st_size
        _timestamps(path, result)
    except OSError as exc:
        result.add_error(f"Validation failed: {exc}")
    return result


__all__ = ["DATA_FILE_EXTENSIONS", "NO_DATA_FILES_WARNING", "validate_snapshot"]
