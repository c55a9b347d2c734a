import os
import zipfile

import pytest

from snapshots.archive import build_snapshot, extract_snapshot
from snapshots.errors import CorruptionError, OperationCancelledError
from snapshots.tree import clear_directory, copy_tree, iter_entries, tree_size
from snapshots.types import CancellationToken, CompressionLevel

symlinks = pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")


@symlinks
def test_walk_survives_symlink_cycle(tmp_path):
    root = tmp_path / "data"
    (root / "a").mkdir(parents=True)
    (root / "a" / "file.json").write_text("{}", encoding="utf-8")
    os.symlink(root, root / "a" / "loop", target_is_directory=True)

    entries = [relative for _path, relative, is_dir in iter_entries(root) if not is_dir]

    assert entries == ["a/file.json"]


@symlinks
def test_dangling_symlink_is_skipped(tmp_path):
    root = tmp_path / "data"
    root.mkdir()
    (root / "real.json").write_text("{}", encoding="utf-8")
    os.symlink(tmp_path / "gone", root / "dangling")

    names = [relative for _path, relative, _is_dir in iter_entries(root)]

    assert names == ["real.json"]


def test_copy_tree_overwrites_and_counts(tmp_path):
    source = tmp_path / "src"
    (source / "x").mkdir(parents=True)
    (source / "x" / "one.json").write_text("new", encoding="utf-8")
    dest = tmp_path / "dst"
    (dest / "x").mkdir(parents=True)
    (dest / "x" / "one.json").write_text("old", encoding="utf-8")
    (dest / "keep.txt").write_text("k", encoding="utf-8")

    copied = copy_tree(source, dest)

    assert copied == 1
    assert (dest / "x" / "one.json").read_text(encoding="utf-8") == "new"
    assert (dest / "keep.txt").exists()
    assert tree_size(dest) == 4


def test_clear_directory_keeps_root(tmp_path):
    root = tmp_path / "data"
    (root / "nested").mkdir(parents=True)
    (root / "nested" / "f").write_text("x", encoding="utf-8")
    (root / "g").write_text("y", encoding="utf-8")

    clear_directory(root)

    assert root.is_dir()
    assert list(root.iterdir()) == []


@pytest.mark.parametrize("level", list(CompressionLevel))
def test_every_compression_level_round_trips(tmp_path, level):
    source = tmp_path / "data"
    source.mkdir()
    (source / "payload.json").write_text("a" * 1000, encoding="utf-8")
    dest = tmp_path / "out" / f"{level.value}.zip"

    build_snapshot(source, dest, compressed=True, level=level)
    target = tmp_path / f"restored-{level.value}"
    extract_snapshot(dest, target)

    assert (target / "payload.json").read_text(encoding="utf-8") == "a" * 1000
    with zipfile.ZipFile(dest) as archive:
        info = archive.getinfo("payload.json")
    expected = zipfile.ZIP_STORED if level is CompressionLevel.NONE else zipfile.ZIP_DEFLATED
    assert info.compress_type == expected


def test_cancelled_build_leaves_no_artifact(tmp_path):
    source = tmp_path / "data"
    source.mkdir()
    (source / "a.json").write_text("{}", encoding="utf-8")
    dest = tmp_path / "out" / "snap.zip"
    token = CancellationToken()
    token.set()

    with pytest.raises(OperationCancelledError):
        build_snapshot(source, dest, compressed=True, cancel=token)

    assert not dest.exists()
    assert not (tmp_path / "out" / "snap.zip.partial").exists()


def test_extracting_garbage_raises_corruption(tmp_path):
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"definitely not a zip")

    with pytest.raises(CorruptionError):
        extract_snapshot(bogus, tmp_path / "target")


@symlinks
def test_shared_target_is_walked_through_every_link(tmp_path):
    shared = tmp_path / "shared"
    shared.mkdir()
    (shared / "rows.json").write_text("[]", encoding="utf-8")
    root = tmp_path / "data"
    root.mkdir()
    os.symlink(shared, root / "first", target_is_directory=True)
    os.symlink(shared, root / "second", target_is_directory=True)

    entries = [relative for _path, relative, is_dir in iter_entries(root) if not is_dir]

    assert entries == ["first/rows.json", "second/rows.json"]
