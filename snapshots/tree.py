"""Directory walking, copying and clearing with symlink-cycle protection."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from .errors import OperationCancelledError
from .types import CancellationToken

LOGGER = logging.getLogger("datasafe.backup.tree")


def check_cancelled(cancel: Optional[CancellationToken], where: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(f"operation cancelled during {where}")


def _raise(exc: OSError) -> None:
    raise exc


def is_within(path: Path, parent: Path) -> bool:
    """True when *path* is *parent* or lies below it, after resolving links."""

    try:
        Path(path).absolute().resolve().relative_to(Path(parent).absolute().resolve())
    except ValueError:
        return False
    return True


def _inode(path: str) -> Tuple[int, int]:
    st = os.stat(path)
    return st.st_dev, st.st_ino


def walk_tree(
    root: Path,
    *,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Tuple[Path, List[str], List[str]]]:
    """Yield ``(directory, dirnames, filenames)`` below *root*, sorted.

    Symlinked directories are followed.  A directory whose ``(st_dev, st_ino)``
    is one of its own ancestors closes a cycle; it is reported and dropped
    from *dirnames*.  The same directory reached through two unrelated links
    is walked both times.  Read errors propagate instead of being skipped.
    """

    top = os.fspath(root)
    ancestors: Dict[str, FrozenSet[Tuple[int, int]]] = {top: frozenset({_inode(top)})}
    for current, dirs, files in os.walk(top, followlinks=True, onerror=_raise):
        check_cancelled(cancel, "directory walk")
        chain = ancestors.pop(current)
        kept: List[str] = []
        for name in sorted(dirs):
            child = os.path.join(current, name)
            key = _inode(child)
            if key in chain:
                LOGGER.warning("Circular symlink detected, skipping: %s", child)
                continue
            ancestors[child] = chain | {key}
            kept.append(name)
        dirs[:] = kept
        files.sort()
        yield Path(current), dirs, files


def iter_entries(
    root: Path,
    *,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Tuple[Path, str, bool]]:
    """Yield ``(path, relative_posix_path, is_dir)`` for everything below *root*."""

    root = Path(root)
    for current, dirs, files in walk_tree(root, cancel=cancel):
        for name in dirs:
            path = current / name
            yield path, path.relative_to(root).as_posix(), True
        for name in files:
            path = current / name
            if path.is_symlink() and not path.exists():
                LOGGER.warning("Skipping dangling symlink: %s", path)
                continue
            yield path, path.relative_to(root).as_posix(), False


def copy_tree(
    source: Path,
    dest: Path,
    *,
    cancel: Optional[CancellationToken] = None,
) -> int:
    """Copy *source* into *dest* byte-for-byte, overwriting same-named files."""

    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    copied = 0
    for path, relative, is_dir in iter_entries(source, cancel=cancel):
        target = dest / relative
        if is_dir:
            target.mkdir(parents=True, exist_ok=True)
            continue
        check_cancelled(cancel, "copy")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
        copied += 1
    return copied


def remove_path(path: Path) -> None:
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def clear_directory(path: Path) -> None:
    """Delete everything inside *path* and leave an empty directory behind."""

    path = Path(path)
    if path.exists():
        for child in sorted(path.iterdir()):
            remove_path(child)
    path.mkdir(parents=True, exist_ok=True)


def tree_size(path: Path) -> int:
    path = Path(path)
    if path.is_file():
        return path.stat().st_size
    total = 0
    for entry, _relative, is_dir in iter_entries(path):
        if not is_dir:
            total += entry.stat().st_size
    return total


def tree_has_files(path: Path) -> bool:
    for _entry, _relative, is_dir in iter_entries(path):
        if not is_dir:
            return True
    return False


__all__ = [
    "check_cancelled",
    "clear_directory",
    "copy_tree",
    "is_within",
    "iter_entries",
    "remove_path",
    "tree_has_files",
    "tree_size",
    "walk_tree",
]
