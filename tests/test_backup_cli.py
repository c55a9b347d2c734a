import json

import pytest

from snapshots import cli as cli_module
from snapshots.archive import extract_snapshot
from snapshots.cli import EXIT_FAILED, EXIT_FATAL, EXIT_OK, EXIT_RESTORED_SAFETY, cli
from snapshots.errors import BackupIOError


@pytest.fixture()
def working_dir(tmp_path):
    settings = {
        "backup": {"min_free_disk_mb": 0},
        "logging": {"json_file": False},
    }
    (tmp_path / "settings.json").write_text(json.dumps(settings), encoding="utf-8")
    data = tmp_path / "data"
    data.mkdir()
    (data / "store.json").write_text("v1", encoding="utf-8")
    return tmp_path


def _run(working_dir, *args):
    return cli(["--working-dir", str(working_dir), *args])


def test_create_list_verify(working_dir, capsys):
    assert _run(working_dir, "create", "--description", "cli") == EXIT_OK
    created = capsys.readouterr().out.strip()
    assert created.endswith("_cli.zip")

    assert _run(working_dir, "list", "--json") == EXIT_OK
    listing = json.loads(capsys.readouterr().out)
    assert [item["path"] for item in listing] == [created]

    assert _run(working_dir, "verify", created) == EXIT_OK
    assert capsys.readouterr().out.startswith("valid")


def test_verify_invalid_snapshot(working_dir, capsys):
    backups = working_dir / "backups"
    backups.mkdir()
    (backups / "bad.zip").write_bytes(b"")

    assert _run(working_dir, "verify", "bad.zip") == EXIT_FAILED
    assert "Backup file is empty" in capsys.readouterr().out


def test_restore_round_trip(working_dir, capsys):
    _run(working_dir, "create")
    snapshot = capsys.readouterr().out.strip()
    (working_dir / "data" / "store.json").write_text("v2", encoding="utf-8")

    assert _run(working_dir, "restore", snapshot) == EXIT_OK
    assert (working_dir / "data" / "store.json").read_text(encoding="utf-8") == "v1"


def test_restore_exit_codes(working_dir, capsys, monkeypatch):
    _run(working_dir, "create")
    snapshot = capsys.readouterr().out.strip()
    calls = []

    def flaky(path, target, *, cancel=None):
        calls.append(path)
        if len(calls) == 1:
            raise BackupIOError("simulated")
        return extract_snapshot(path, target, cancel=cancel)

    monkeypatch.setattr("snapshots.restore.extract_snapshot", flaky)
    assert _run(working_dir, "restore", snapshot) == EXIT_RESTORED_SAFETY

    def broken(path, target, *, cancel=None):
        raise BackupIOError("simulated")

    monkeypatch.setattr("snapshots.restore.extract_snapshot", broken)
    assert _run(working_dir, "restore", snapshot) == EXIT_FATAL
    assert "FATAL" in capsys.readouterr().err


def test_errors_map_to_failure(working_dir, capsys):
    assert _run(working_dir, "restore", "missing.zip") == EXIT_FAILED
    assert "Error:" in capsys.readouterr().err


def test_delete_prune_size(working_dir, capsys):
    for _ in range(2):
        _run(working_dir, "create")
    paths = capsys.readouterr().out.split()

    assert _run(working_dir, "size") == EXIT_OK
    assert "bytes" in capsys.readouterr().out

    assert _run(working_dir, "delete", paths[0]) == EXIT_OK
    assert capsys.readouterr().out.strip() == "deleted"
    assert _run(working_dir, "delete", paths[0]) == EXIT_OK
    assert capsys.readouterr().out.strip() == "not found"

    assert _run(working_dir, "prune") == EXIT_OK
    assert "1 kept" in capsys.readouterr().out


def test_main_reads_argv(monkeypatch, working_dir, capsys):
    monkeypatch.setattr(cli_module.sys, "argv", ["datasafe-backup", "--working-dir", str(working_dir), "size"])

    assert cli_module.main() == EXIT_OK
