import json
import sqlite3
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from snapshots.api import BackupService
from snapshots.errors import (
    BackupDisabledError,
    ConfigurationError,
    CorruptionError,
    InsufficientSpaceError,
    SourceMissingError,
)
from snapshots.logs import BackupLogger
from snapshots.types import BackupOptions, ValidationResult
from snapshots.verify import NO_DATA_FILES_WARNING, validate_snapshot


def _init_db(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS sample(id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("INSERT INTO sample(name) VALUES (?)", ("example",))
        conn.commit()
    finally:
        conn.close()


def _service(tmp_path: Path, **overrides) -> BackupService:
    overrides.setdefault("min_free_disk_mb", 0)
    options = BackupOptions().with_overrides(**overrides)
    return BackupService(
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        options=options,
        logger=BackupLogger(tmp_path / "logs" / "backup.jsonl"),
    )


def _events(tmp_path: Path):
    log_path = tmp_path / "logs" / "backup.jsonl"
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]


def test_create_and_verify_backup(tmp_path):
    _init_db(tmp_path / "data" / "catalog.db")
    (tmp_path / "data" / "index").mkdir()
    (tmp_path / "data" / "index" / "entities.json").write_text(json.dumps({"ids": [1, 2]}), encoding="utf-8")

    service = _service(tmp_path)
    path = service.create_backup("nightly run")

    assert path.exists()
    assert path.parent == tmp_path / "backups"
    assert path.suffix == ".zip"
    assert path.stem.endswith("_nightly run")
    with zipfile.ZipFile(path, "r") as archive:
        names = archive.namelist()
    assert "catalog.db" in names
    assert "index/entities.json" in names

    result = service.validate_backup(path)
    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []
    assert result.metadata["format_version"] == "1.0"
    assert result.metadata["file_size"] == path.stat().st_size

    records = service.get_available_backups()
    assert [record.path for record in records] == [path]
    assert records[0].description == "nightly run"
    assert records[0].is_compressed

    events = [entry["event"] for entry in _events(tmp_path)]
    assert "backup_created" in events
    assert "retention_applied" in events
    assert "backup_validated" in events


def test_folder_snapshot_copies_tree(tmp_path):
    data = tmp_path / "data"
    (data / "nested").mkdir(parents=True)
    (data / "nested" / "rows.json").write_text("[]", encoding="utf-8")

    service = _service(tmp_path, compress=False)
    path = service.create_backup()

    assert path.suffix == ".bak"
    assert path.is_dir()
    assert (path / "nested" / "rows.json").read_text(encoding="utf-8") == "[]"
    assert validate_snapshot(path).is_valid
    assert not path.with_name(path.name + ".partial").exists()


def test_empty_data_directory_gives_valid_snapshot_with_warning(tmp_path):
    (tmp_path / "data").mkdir()
    service = _service(tmp_path)

    path = service.create_backup()
    result = service.validate_backup(path)

    assert result.is_valid
    assert result.metadata["entry_count"] == 0
    assert NO_DATA_FILES_WARNING in result.warnings


def test_description_is_sanitized(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "a.json").write_text("{}", encoding="utf-8")
    service = _service(tmp_path)

    path = service.create_backup('before: "upgrade"/v2')

    assert path.name.endswith("_before_ _upgrade_v2.zip")


def test_collisions_get_counter_suffix(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "a.json").write_text("{}", encoding="utf-8")
    fixed = datetime(2024, 5, 1, 3, 15, 0)
    service = BackupService(
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        options=BackupOptions(min_free_disk_mb=0, max_backups=0),
        logger=BackupLogger(),
        clock=lambda: fixed,
    )

    first = service.create_backup()
    second = service.create_backup()
    described = service.create_backup("again")
    third = service.create_backup("again")

    assert first.name == "backup-20240501-031500.zip"
    assert second.name == "backup-20240501-031500-2.zip"
    assert described.name == "backup-20240501-031500_again.zip"
    assert third.name == "backup-20240501-031500-2_again.zip"
    assert {record.description for record in service.get_available_backups()} == {None, "again"}


def test_validation_rules(tmp_path):
    missing = tmp_path / "missing.zip"
    assert validate_snapshot(missing).errors == ["Backup file does not exist"]

    empty = tmp_path / "empty.zip"
    empty.write_bytes(b"")
    assert validate_snapshot(empty).errors == ["Backup file is empty"]

    corrupt = tmp_path / "corrupt.zip"
    corrupt.write_bytes(b"this is not a zip archive")
    result = validate_snapshot(corrupt)
    assert not result.is_valid
    assert result.errors == ["Backup archive is corrupted"]

    foreign = tmp_path / "foreign.zip"
    with zipfile.ZipFile(foreign, "w"):
        pass
    assert validate_snapshot(foreign).errors == ["Backup archive is empty"]

    no_data = tmp_path / "no-data.zip"
    with zipfile.ZipFile(no_data, "w") as archive:
        archive.writestr("readme.txt", "hello")
    result = validate_snapshot(no_data)
    assert result.is_valid
    assert result.warnings == [NO_DATA_FILES_WARNING]


def test_corrupted_member_fails_crc_check(tmp_path):
    path = tmp_path / "crc.zip"
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as archive:
        archive.writestr("data.json", "x" * 200)
    raw = bytearray(path.read_bytes())
    offset = raw.index(b"x" * 200)
    raw[offset + 10] = ord("y")
    path.write_bytes(bytes(raw))

    result = validate_snapshot(path)

    assert not result.is_valid
    assert "Backup archive is corrupted" in result.errors


def test_create_fails_when_disabled(tmp_path):
    (tmp_path / "data").mkdir()
    service = _service(tmp_path, enabled=False)

    with pytest.raises(BackupDisabledError):
        service.create_backup()
    assert not list((tmp_path / "backups").glob("*"))


def test_create_fails_without_source(tmp_path):
    service = _service(tmp_path)

    with pytest.raises(SourceMissingError):
        service.create_backup()
    assert [entry["event"] for entry in _events(tmp_path)][-1] == "backup_failed"


def test_create_checks_free_space(tmp_path):
    (tmp_path / "data").mkdir()
    service = _service(tmp_path, min_free_disk_mb=10**12)

    with pytest.raises(InsufficientSpaceError):
        service.create_backup()


def test_backup_dir_inside_data_dir_is_rejected(tmp_path):
    (tmp_path / "data").mkdir()
    service = BackupService(
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "data" / "backups",
        options=BackupOptions(min_free_disk_mb=0),
        logger=BackupLogger(),
    )

    with pytest.raises(ConfigurationError):
        service.create_backup()


def test_invalid_snapshot_is_removed_after_create(tmp_path, monkeypatch):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "a.json").write_text("{}", encoding="utf-8")
    service = _service(tmp_path)

    def reject(path):
        result = ValidationResult()
        result.add_error("Backup archive is corrupted")
        return result

    monkeypatch.setattr("snapshots.api.validate_snapshot", reject)

    with pytest.raises(CorruptionError):
        service.create_backup()
    assert service.get_available_backups() == []


def test_validation_and_catalog_agree_on_creation_time(tmp_path):
    _init_db(tmp_path / "data" / "catalog.db")
    service = _service(tmp_path)
    path = service.create_backup()

    [record] = service.get_available_backups()
    result = service.validate_backup(path)

    assert result.metadata["created_at"] == record.created_at
