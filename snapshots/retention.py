"""Retention policy enforcement for snapshots."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from .catalog import list_snapshots
from .logs import BackupLogger
from .tree import remove_path, tree_size
from .types import BackupOptions, RetentionMode, RetentionSummary, SnapshotRecord


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    """Which snapshots survive pruning.

    A cap of zero means unlimited, never "delete everything".  ``SMART``
    keeps the newest snapshot per day for ``smart_days`` days, per ISO week
    for ``smart_weeks`` weeks and per month for ``smart_months`` months;
    ``keep_last`` additionally caps the survivors when positive.
    """

    mode: RetentionMode = RetentionMode.KEEP_LAST
    keep_last: int = 0
    max_age_days: int = 0
    max_total_bytes: int = 0
    smart_days: int = 7
    smart_weeks: int = 4
    smart_months: int = 12

    @classmethod
    def keep_all(cls) -> "RetentionPolicy":
        return cls(mode=RetentionMode.KEEP_ALL)

    @classmethod
    def keep_latest(cls, count: int) -> "RetentionPolicy":
        return cls(mode=RetentionMode.KEEP_LAST, keep_last=int(count))

    @classmethod
    def keep_by_age(cls, days: int) -> "RetentionPolicy":
        return cls(mode=RetentionMode.KEEP_BY_AGE, max_age_days=int(days))

    @classmethod
    def keep_by_size(cls, max_bytes: int) -> "RetentionPolicy":
        return cls(mode=RetentionMode.KEEP_BY_SIZE, max_total_bytes=int(max_bytes))

    @classmethod
    def smart(cls, keep_last: int = 0) -> "RetentionPolicy":
        return cls(mode=RetentionMode.SMART, keep_last=int(keep_last))

    @classmethod
    def from_options(cls, options: BackupOptions) -> "RetentionPolicy":
        return cls(
            mode=options.retention_policy,
            keep_last=max(options.max_backups, 0),
            max_age_days=max(options.max_age_days, 0),
            max_total_bytes=max(options.max_directory_size_bytes, 0),
        )

    @property
    def engaged(self) -> bool:
        if self.mode is RetentionMode.KEEP_LAST:
            return self.keep_last > 0
        if self.mode is RetentionMode.KEEP_BY_AGE:
            return self.max_age_days > 0
        if self.mode is RetentionMode.KEEP_BY_SIZE:
            return self.max_total_bytes > 0
        return self.mode is RetentionMode.SMART


def _resolve(path: Path) -> Path:
    try:
        return Path(path).resolve()
    except OSError:
        return Path(path).absolute()


def _keep_latest(records: List[SnapshotRecord], count: int, protected: Set[Path]) -> List[SnapshotRecord]:
    ordered = [meta for meta in records if _resolve(meta.path) in protected]
    ordered += [meta for meta in records if _resolve(meta.path) not in protected]
    return ordered[count:]


def _expired(records: List[SnapshotRecord], days: int, now: datetime) -> List[SnapshotRecord]:
    cutoff = now - timedelta(days=days)
    return [meta for meta in records if meta.created_at < cutoff]


def _over_size(records: List[SnapshotRecord], total: int, limit: int) -> List[SnapshotRecord]:
    removals: List[SnapshotRecord] = []
    for meta in reversed(records):
        if total <= limit:
            break
        removals.append(meta)
        total -= meta.size_bytes
    return removals


def _smart_keep(records: List[SnapshotRecord], policy: RetentionPolicy, now: datetime) -> Set[Path]:
    keep: Set[Path] = set()
    if records:
        keep.add(records[0].path)

    seen_days: Set[str] = set()
    seen_weeks: Set[tuple[int, int]] = set()
    seen_months: Set[tuple[int, int]] = set()
    current_month = now.year * 12 + now.month
    for meta in records:
        created = meta.created_at.astimezone(now.tzinfo)
        if (now.date() - created.date()).days < policy.smart_days:
            day_key = created.date().isoformat()
            if day_key not in seen_days:
                seen_days.add(day_key)
                keep.add(meta.path)
        if now - created < timedelta(weeks=policy.smart_weeks):
            year, week, _ = created.isocalendar()
            if (year, week) not in seen_weeks:
                seen_weeks.add((year, week))
                keep.add(meta.path)
        if current_month - (created.year * 12 + created.month) < policy.smart_months:
            month_key = (created.year, created.month)
            if month_key not in seen_months:
                seen_months.add(month_key)
                keep.add(meta.path)

    if policy.keep_last > 0:
        survivors = [meta.path for meta in records if meta.path in keep]
        keep = set(survivors[: policy.keep_last])
    return keep


def select_for_removal(
    records: List[SnapshotRecord],
    policy: RetentionPolicy,
    *,
    directory_size: int = 0,
    now: Optional[datetime] = None,
    protected: Iterable[Path] = (),
) -> List[SnapshotRecord]:
    """Return the snapshots *policy* would delete; *records* are newest first."""

    if not policy.engaged:
        return []
    now = now or datetime.now(timezone.utc)
    guarded = {_resolve(path) for path in protected}

    if policy.mode is RetentionMode.KEEP_LAST:
        candidates = _keep_latest(records, policy.keep_last, guarded)
    elif policy.mode is RetentionMode.KEEP_BY_AGE:
        candidates = _expired(records, policy.max_age_days, now)
    elif policy.mode is RetentionMode.KEEP_BY_SIZE:
        unguarded = [meta for meta in records if _resolve(meta.path) not in guarded]
        candidates = _over_size(unguarded, directory_size, policy.max_total_bytes)
    else:
        keep = _smart_keep(records, policy, now)
        candidates = [meta for meta in records if meta.path not in keep]
    return [meta for meta in candidates if _resolve(meta.path) not in guarded]


def apply_retention(
    backup_dir: Path,
    policy: RetentionPolicy,
    *,
    logger: BackupLogger,
    protected: Iterable[Path] = (),
    delete: Optional[Callable[[Path], None]] = None,
) -> RetentionSummary:
    """Delete the snapshots in *backup_dir* that *policy* does not keep.

    A snapshot that cannot be deleted is logged and skipped; the remaining
    candidates are still processed.
    """

    delete = delete or remove_path
    items = list_snapshots(backup_dir)
    directory_size = 0
    if policy.mode is RetentionMode.KEEP_BY_SIZE and policy.engaged:
        try:
            directory_size = tree_size(backup_dir)
        except OSError:
            directory_size = sum(meta.size_bytes for meta in items)
    candidates = select_for_removal(items, policy, directory_size=directory_size, protected=protected)

    removed: List[str] = []
    failed: List[str] = []
    for meta in candidates:
        try:
            delete(meta.path)
        except OSError as exc:
            failed.append(str(meta.path))
            logger.warning("backup_delete_failed", path=str(meta.path), reason="retention", error=str(exc))
            continue
        removed.append(str(meta.path))
        logger.info("backup_removed", path=str(meta.path), reason="retention", policy=policy.mode.value)

    kept = [str(meta.path) for meta in items if str(meta.path) not in removed]
    freed = sum(meta.size_bytes for meta in items if str(meta.path) in removed)
    logger.event(
        event="retention_applied",
        phase="retention",
        ok=not failed,
        policy=policy.mode.value,
        removed=len(removed),
        kept=len(kept),
        failed=len(failed),
    )
    return RetentionSummary(removed=removed, kept=kept, freed_bytes=freed, failed=failed)


__all__ = ["RetentionPolicy", "apply_retention", "select_for_removal"]
