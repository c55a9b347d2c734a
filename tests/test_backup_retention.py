import os
from datetime import datetime, timedelta, timezone

from snapshots.api import BackupService
from snapshots.catalog import list_snapshots
from snapshots.logs import BackupLogger
from snapshots.retention import RetentionPolicy, apply_retention, select_for_removal
from snapshots.types import BackupOptions, RetentionMode, SnapshotRecord


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("warning", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))


def _create_snapshot(base, created: datetime, size_bytes: int) -> str:
    name = created.strftime("backup-%Y%m%d-%H%M%S") + ".zip"
    path = base / name
    path.write_bytes(b"x" * size_bytes)
    stamp = created.timestamp()
    os.utime(path, (stamp, stamp))
    return str(path)


def _record(path, created: datetime, size: int = 1) -> SnapshotRecord:
    return SnapshotRecord(
        path=path,
        file_name=path.name,
        created_at=created,
        size_bytes=size,
        description=None,
        is_compressed=True,
    )


def test_apply_retention_removes_old_backups(tmp_path):
    base = tmp_path / "backups"
    base.mkdir(parents=True)

    logger = StubLogger()
    now = datetime.now(timezone.utc).replace(microsecond=0)
    sizes = [10, 20, 30, 40]
    paths = [_create_snapshot(base, now - timedelta(days=index), size) for index, size in enumerate(sizes)]

    summary = apply_retention(base, RetentionPolicy.keep_latest(2), logger=logger)

    assert set(summary.removed) == set(paths[2:])
    assert set(summary.kept) == set(paths[:2])
    assert summary.freed_bytes == sum(sizes[2:])
    assert summary.failed == []
    for path in summary.removed:
        assert not os.path.exists(path)
    for path in summary.kept:
        assert os.path.exists(path)
    assert logger.events[-1][1] == "retention_applied"


def test_zero_cap_keeps_everything(tmp_path):
    base = tmp_path / "backups"
    base.mkdir()
    now = datetime.now(timezone.utc)
    for index in range(4):
        _create_snapshot(base, now - timedelta(days=index), 5)

    for policy in (
        RetentionPolicy.keep_latest(0),
        RetentionPolicy.keep_by_age(0),
        RetentionPolicy.keep_by_size(0),
        RetentionPolicy.keep_all(),
    ):
        summary = apply_retention(base, policy, logger=StubLogger())
        assert summary.removed == []
    assert len(list_snapshots(base)) == 4


def test_keep_by_age_and_size(tmp_path):
    base = tmp_path / "backups"
    base.mkdir()
    now = datetime.now(timezone.utc).replace(microsecond=0)
    fresh = _create_snapshot(base, now - timedelta(days=1), 100)
    middle = _create_snapshot(base, now - timedelta(days=5), 100)
    old = _create_snapshot(base, now - timedelta(days=40), 100)

    summary = apply_retention(base, RetentionPolicy.keep_by_age(30), logger=StubLogger())
    assert summary.removed == [old]

    summary = apply_retention(base, RetentionPolicy.keep_by_size(150), logger=StubLogger())
    assert summary.removed == [middle]
    assert summary.kept == [fresh]


def test_protected_snapshot_survives(tmp_path):
    base = tmp_path / "backups"
    base.mkdir()
    now = datetime.now(timezone.utc)
    paths = [_create_snapshot(base, now - timedelta(days=index), 1) for index in range(3)]

    summary = apply_retention(base, RetentionPolicy.keep_latest(1), logger=StubLogger(), protected=[paths[2]])

    assert set(summary.kept) == {paths[2]}
    assert set(summary.removed) == set(paths[:2])


def test_deletion_failure_is_logged_and_skipped(tmp_path):
    base = tmp_path / "backups"
    base.mkdir()
    now = datetime.now(timezone.utc)
    paths = [_create_snapshot(base, now - timedelta(days=index), 1) for index in range(4)]
    logger = StubLogger()

    def delete(path):
        if str(path) == paths[2]:
            raise PermissionError("locked")
        os.remove(path)

    summary = apply_retention(base, RetentionPolicy.keep_latest(1), logger=logger, delete=delete)

    assert summary.failed == [paths[2]]
    assert set(summary.removed) == {paths[1], paths[3]}
    assert ("warning", "backup_delete_failed") in [(kind, name) for kind, name, *_ in logger.events]
    assert os.path.exists(paths[2])


def test_smart_keeps_daily_weekly_monthly(tmp_path):
    now = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
    records = []
    for hours in range(0, 24 * 400, 12):
        created = now - timedelta(hours=hours)
        records.append(_record(tmp_path / f"snap-{hours:05d}.zip", created))

    removals = select_for_removal(records, RetentionPolicy.smart(), now=now)
    kept = [record for record in records if record not in removals]

    assert records[0] in kept
    kept_days = {record.created_at.date() for record in kept if (now.date() - record.created_at.date()).days < 7}
    assert len(kept_days) == 7
    recent = [record for record in kept if (now.date() - record.created_at.date()).days < 7]
    assert len(recent) == 7
    months = {(record.created_at.year, record.created_at.month) for record in kept}
    assert len(months) == 12
    assert all(now.year * 12 + now.month - (r.created_at.year * 12 + r.created_at.month) < 12 for r in kept)
    assert len(kept) < 7 + 4 + 12 + 1


def test_smart_respects_max_backups_cap(tmp_path):
    now = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
    records = [_record(tmp_path / f"snap-{day}.zip", now - timedelta(days=day)) for day in range(60)]

    removals = select_for_removal(records, RetentionPolicy.smart(keep_last=3), now=now)
    kept = [record for record in records if record not in removals]

    assert kept == records[:3]


def test_retention_mode_follows_options():
    options = BackupOptions(retention_policy=RetentionMode.KEEP_BY_AGE, max_age_days=7, max_backups=2)
    policy = RetentionPolicy.from_options(options)

    assert policy.mode is RetentionMode.KEEP_BY_AGE
    assert policy.max_age_days == 7
    assert policy.engaged


def test_max_backups_cap_after_five_creates(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "store.json").write_text("{}", encoding="utf-8")
    service = BackupService(
        data_dir=data,
        backup_dir=tmp_path / "backups",
        options=BackupOptions(max_backups=3, min_free_disk_mb=0),
        logger=BackupLogger(),
    )

    created = [service.create_backup() for _ in range(5)]

    remaining = service.get_available_backups()
    assert len(remaining) == 3
    assert created[-1] in [record.path for record in remaining]
