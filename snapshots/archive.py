"""Build snapshots of a directory and unpack them again."""
from __future__ import annotations

import logging
import os
import shutil
import zipfile
import zlib
from pathlib import Path
from typing import Optional

from .catalog import PARTIAL_SUFFIX
from .errors import (
    BackupError,
    BackupIOError,
    ConfigurationError,
    CorruptionError,
    InsufficientSpaceError,
    SourceMissingError,
)
from .tree import check_cancelled, copy_tree, is_within, iter_entries, remove_path
from .types import SNAPSHOT_FORMAT_VERSION, CancellationToken, CompressionLevel

LOGGER = logging.getLogger("datasafe.backup.archive")

SNAPSHOT_MARKER_PREFIX = b"datasafe-snapshot/"
SNAPSHOT_MARKER = SNAPSHOT_MARKER_PREFIX + SNAPSHOT_FORMAT_VERSION.encode("ascii")

_ZIP_SETTINGS = {
    CompressionLevel.NONE: (zipfile.ZIP_STORED, None),
    CompressionLevel.FASTEST: (zipfile.ZIP_DEFLATED, 1),
    CompressionLevel.OPTIMAL: (zipfile.ZIP_DEFLATED, 6),
    CompressionLevel.SMALLEST: (zipfile.ZIP_DEFLATED, 9),
}

_CORRUPT_ARCHIVE_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


def _discard(path: Path) -> None:
    try:
        if path.exists() or path.is_symlink():
            remove_path(path)
    except OSError as exc:
        LOGGER.warning("Could not remove partial snapshot %s: %s", path, exc)


def ensure_free_space(directory: Path, required_bytes: int) -> int:
    """Raise ``InsufficientSpaceError`` when *directory* has less free space than required."""

    if required_bytes <= 0:
        return -1
    try:
        free = shutil.disk_usage(directory).free
    except OSError as exc:
        raise BackupIOError(f"cannot read free space for {directory}: {exc}") from exc
    if free < required_bytes:
        raise InsufficientSpaceError(
            f"only {free} bytes free in {directory}, at least {required_bytes} required"
        )
    return free


def _bundle_directory(
    source: Path,
    archive_path: Path,
    *,
    level: CompressionLevel,
    cancel: Optional[CancellationToken],
) -> int:
    compression, compresslevel = _ZIP_SETTINGS[level]
    count = 0
    with zipfile.ZipFile(
        archive_path,
        "w",
        compression=compression,
        compresslevel=compresslevel,
        strict_timestamps=False,
    ) as archive:
        archive.comment = SNAPSHOT_MARKER
        for path, relative, _is_dir in iter_entries(source, cancel=cancel):
            check_cancelled(cancel, "archive build")
            archive.write(path, relative)
            count += 1
    return count


def build_snapshot(
    source_dir: Path,
    dest_path: Path,
    *,
    compressed: bool,
    level: CompressionLevel = CompressionLevel.OPTIMAL,
    cancel: Optional[CancellationToken] = None,
) -> Path:
    """Snapshot *source_dir* into *dest_path* as a zip archive or a folder copy.

    New artifacts are written under a ``.partial`` name and moved into place
    once complete, so a failed build never leaves a file the catalog would
    pick up.  Copying into an existing folder overwrites same-named files.
    """

    source = Path(source_dir)
    dest = Path(dest_path)
    if not source.is_dir():
        raise SourceMissingError(f"Data directory not found: {source}")
    if is_within(dest, source):
        raise ConfigurationError(f"Snapshot destination {dest} lies inside the source {source}")

    if not compressed and dest.is_dir():
        try:
            copy_tree(source, dest, cancel=cancel)
        except OSError as exc:
            raise BackupIOError(f"Copying {source} to {dest} failed: {exc}") from exc
        return dest

    partial = dest.with_name(dest.name + PARTIAL_SUFFIX)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        _discard(partial)
        if compressed:
            entries = _bundle_directory(source, partial, level=level, cancel=cancel)
            LOGGER.debug("Wrote %d entries to %s", entries, partial)
        else:
            copy_tree(source, partial, cancel=cancel)
        os.replace(partial, dest)
    except BackupError:
        _discard(partial)
        raise
    except (OSError, ValueError) as exc:
        _discard(partial)
        raise BackupIOError(f"Creating snapshot {dest} failed: {exc}") from exc
    return dest


def extract_snapshot(
    snapshot: Path,
    target_dir: Path,
    *,
    cancel: Optional[CancellationToken] = None,
) -> int:
    """Unpack a zip snapshot, or copy a folder snapshot, into *target_dir*."""

    snapshot = Path(snapshot)
    target = Path(target_dir)
    if not snapshot.exists():
        raise SourceMissingError(f"Backup file not found: {snapshot}")
    try:
        target.mkdir(parents=True, exist_ok=True)
        if snapshot.is_dir():
            return copy_tree(snapshot, target, cancel=cancel)
        count = 0
        with zipfile.ZipFile(snapshot, "r") as archive:
            for member in archive.infolist():
                check_cancelled(cancel, "extraction")
                archive.extract(member, target)
                count += 1
        return count
    except _CORRUPT_ARCHIVE_ERRORS as exc:
        raise CorruptionError(f"Backup archive is corrupted: {snapshot}: {exc}") from exc
    except OSError as exc:
        raise BackupIOError(f"Extracting {snapshot} into {target} failed: {exc}") from exc


__all__ = [
    "SNAPSHOT_MARKER",
    "SNAPSHOT_MARKER_PREFIX",
    "build_snapshot",
    "ensure_free_space",
    "extract_snapshot",
]
