"""
File-copy snapshot naming, listing and pruning.

Snapshots live flat in one directory as ``db-<timestamp>-<reason>.sqlite``.
The timestamp is a UTC ISO-8601 instant with ``:`` and ``.`` replaced by ``-``,
so sorting names descending lists snapshots newest first.
"""

from __future__ import annotations

import datetime as dt
import enum
import itertools
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path

from app.services.errors import UnsafeFilename

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".sqlite"
SNAPSHOT_RE = re.compile(
    r"^db-(?P<stamp>\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z)-(?P<reason>[a-z0-9_]+)\.sqlite$"
)

RATIO_MIN = 0.05
RATIO_MAX = 0.95
DEFAULT_RATIO = 0.5


class PruneMode(str, enum.Enum):
    LATEST = "latest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class SnapshotInfo:
    name: str
    path: Path
    size_bytes: int
    created_at: dt.datetime
    reason: str


@dataclass(frozen=True)
class PruneFailure:
    file: str
    reason: str


@dataclass
class PruneResult:
    mode: PruneMode
    ratio: float
    total: int
    deleted: list[str] = field(default_factory=list)
    failed: list[PruneFailure] = field(default_factory=list)


def clamp_ratio(ratio: float) -> float:
    if not math.isfinite(ratio):
        return DEFAULT_RATIO
    return min(RATIO_MAX, max(RATIO_MIN, ratio))


def normalize_reason(reason: str) -> str:
    cleaned = re.sub(r"[^a-z0-9_]", "", str(reason or "").lower())
    return cleaned or "manual"


def format_stamp(now: dt.datetime) -> str:
    now = now.astimezone(dt.timezone.utc)
    return f"{now:%Y-%m-%dT%H-%M-%S}-{now.microsecond // 1000:03d}Z"


def build_snapshot_name(reason: str, now: dt.datetime | None = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return f"db-{format_stamp(now)}-{normalize_reason(reason)}{SNAPSHOT_SUFFIX}"


def parse_snapshot_name(name: str) -> tuple[dt.datetime, str] | None:
    m = SNAPSHOT_RE.match(name)
    if not m:
        return None
    created = dt.datetime.strptime(m.group("stamp"), "%Y-%m-%dT%H-%M-%S-%fZ").replace(tzinfo=dt.timezone.utc)
    return created, m.group("reason")


def is_safe_snapshot_name(name: str) -> bool:
    name = str(name or "").strip()
    if not name:
        return False
    if "/" in name or "\\" in name or name != Path(name).name:
        return False
    if not name.endswith(SNAPSHOT_SUFFIX):
        return False
    return SNAPSHOT_RE.match(name) is not None


class SnapshotRetention:
    """Owns the snapshot directory: listing, naming and every kind of prune."""

    def __init__(self, backup_dir: Path | str) -> None:
        self.backup_dir = Path(backup_dir)

    def ensure_dir(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        return self.backup_dir

    def snapshot_path(self, reason: str, now: dt.datetime | None = None) -> Path:
        return self.ensure_dir() / build_snapshot_name(reason, now)

    def reserve_snapshot(self, reason: str, now: dt.datetime | None = None) -> Path:
        """
        Create an empty snapshot file under a name nobody else holds and
        return its path. A second snapshot in the same millisecond gets its
        reason suffixed (`manual_2`, `manual_3`, ...).
        """
        now = now or dt.datetime.now(dt.timezone.utc)
        base = normalize_reason(reason)
        for n in itertools.count(1):
            path = self.snapshot_path(base if n == 1 else f"{base}_{n}", now)
            try:
                path.touch(exist_ok=False)
            except FileExistsError:
                continue
            return path

    def list_snapshots(self) -> list[str]:
        """Snapshot file names, newest first."""
        if not self.backup_dir.is_dir():
            return []
        names = [p.name for p in self.backup_dir.iterdir() if SNAPSHOT_RE.match(p.name) and p.is_file()]
        return sorted(names, reverse=True)

    def list_snapshot_info(self, limit: int | None = None) -> list[SnapshotInfo]:
        items: list[SnapshotInfo] = []
        for name in self.list_snapshots()[:limit]:
            path = self.backup_dir / name
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            created_at, reason = parse_snapshot_name(name)  # list_snapshots() only returns matching names
            items.append(SnapshotInfo(name=name, path=path, size_bytes=size, created_at=created_at, reason=reason))
        return items

    def _unlink(self, name: str) -> None:
        (self.backup_dir / name).unlink()

    def prune_by_cap(self, keep_max: int) -> list[str]:
        """Keep the `keep_max` newest snapshots, delete the rest."""
        targets = self.list_snapshots()[max(0, keep_max):]
        deleted: list[str] = []
        for name in targets:
            try:
                self._unlink(name)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not prune snapshot %s: %s", name, e)
                continue
            deleted.append(name)
        if deleted:
            logger.info("Pruned %d snapshots over cap %d", len(deleted), keep_max)
        return deleted

    def prune_by_ratio(self, mode: PruneMode | str, ratio: float, keep_min: int) -> PruneResult:
        """
        Delete floor(total * ratio) snapshots (at least one) from the newest
        end (`latest`) or the oldest end (`oldest`) of the list, never leaving
        fewer than `keep_min`. Each file is attempted independently.
        """
        mode = PruneMode(mode)
        ratio = clamp_ratio(ratio)
        keep_min = max(0, int(keep_min))

        files = self.list_snapshots()
        total = len(files)
        result = PruneResult(mode=mode, ratio=ratio, total=total)
        if not total:
            return result

        delete_count = max(1, math.floor(total * ratio))
        if total - delete_count < keep_min:
            delete_count = max(0, total - keep_min)
        if delete_count < 1:
            return result

        targets = files[:delete_count] if mode is PruneMode.LATEST else files[total - delete_count:]
        for name in targets:
            try:
                self._unlink(name)
            except OSError as e:
                result.failed.append(PruneFailure(file=name, reason=e.strerror or str(e)))
                continue
            result.deleted.append(name)

        logger.info(
            "Ratio prune mode=%s ratio=%.2f: deleted %d of %d, %d failed",
            mode.value,
            ratio,
            len(result.deleted),
            total,
            len(result.failed),
        )
        return result

    def prune_emergency(self, keep_min: int = 1) -> list[str]:
        """
        Free space after a disk-full failure by deleting the newest half of the
        snapshots, keeping the older ones. An empty list means there
        was nothing to reclaim.
        """
        result = self.prune_by_ratio(PruneMode.LATEST, 0.5, keep_min)
        logger.warning(
            "Emergency prune deleted %d of %d snapshots",
            len(result.deleted),
            result.total,
            extra={"deleted": result.deleted},
        )
        return result.deleted

    def delete_one(self, name: str) -> bool:
        if not is_safe_snapshot_name(name):
            raise UnsafeFilename(name)
        path = self.backup_dir / name
        if not path.is_file():
            return False
        path.unlink()
        logger.info("Deleted snapshot %s", name)
        return True
