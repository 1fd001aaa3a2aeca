import asyncio
import datetime as dt
import signal
import threading
import time

import pytest

from app.services.errors import CopyFailed
from app.services.retention import SnapshotRetention, parse_snapshot_name
from app.services.scheduler import BackupScheduler


@pytest.fixture
def store_file(tmp_path):
    path = tmp_path / "db.sqlite"
    path.write_bytes(b"SQLite format 3\x00" + bytes(range(256)))
    return path


@pytest.fixture
def scheduler(store_file, retention):
    return BackupScheduler(database_path=store_file, retention=retention, keep_max=3, interval_seconds=0.01)


def test_take_snapshot_is_exact_copy(scheduler, store_file):
    path = scheduler.take_snapshot("manual")
    assert path.name.startswith("db-")
    assert path.name.endswith("-manual.sqlite")
    assert path.read_bytes() == store_file.read_bytes()


def test_take_snapshot_prunes_to_cap(scheduler, retention, make_snapshots):
    old = make_snapshots(5)

    path = scheduler.take_snapshot("manual")

    remaining = retention.list_snapshots()
    assert remaining == [path.name, old[4], old[3]]


def test_failed_copy_is_reported_not_raised(retention, tmp_path):
    scheduler = BackupScheduler(database_path=tmp_path / "missing.sqlite", retention=retention, keep_max=3)

    with pytest.raises(CopyFailed):
        scheduler.take_snapshot("manual")
    assert scheduler.trigger_snapshot("interval") is None
    assert retention.list_snapshots() == []


def test_signal_snapshot_then_exit(scheduler, retention):
    with pytest.raises(SystemExit) as exc_info:
        scheduler._handle_signal(signal.SIGTERM, None)

    assert exc_info.value.code == 0
    [name] = retention.list_snapshots()
    assert name.endswith("-sigterm.sqlite")


def test_signal_snapshot_chains_previous_handler(scheduler, retention):
    calls = []
    scheduler._previous_handlers[signal.SIGINT] = lambda signum, frame: calls.append(signum)

    scheduler._handle_signal(signal.SIGINT, None)

    assert calls == [signal.SIGINT]
    assert retention.list_snapshots()[0].endswith("-sigint.sqlite")


def test_install_and_restore_signal_handlers(scheduler):
    before = signal.getsignal(signal.SIGTERM)
    try:
        assert scheduler.install_signal_handlers((signal.SIGTERM,)) is True
        assert signal.getsignal(signal.SIGTERM) == scheduler._handle_signal
    finally:
        scheduler.restore_signal_handlers()
    assert signal.getsignal(signal.SIGTERM) == before


def test_interval_task_takes_snapshots(scheduler, retention):
    async def run():
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()

    asyncio.run(run())

    assert not scheduler.running
    names = retention.list_snapshots()
    assert names
    assert all(parse_snapshot_name(n)[1].startswith("interval") for n in names)
    assert len(names) <= 3


def test_same_instant_snapshots_get_distinct_names(scheduler, retention, monkeypatch):
    real_reserve = retention.reserve_snapshot
    at = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)
    monkeypatch.setattr(retention, "reserve_snapshot", lambda reason: real_reserve(reason, at))

    first = scheduler.take_snapshot("manual")
    second = scheduler.take_snapshot("manual")

    assert first != second
    assert first.exists() and second.exists()
    assert retention.list_snapshots() == [second.name, first.name]
    assert parse_snapshot_name(second.name)[1] == "manual_2"


def test_prune_error_after_copy_keeps_snapshot(scheduler, retention, monkeypatch):
    def broken_prune(keep_max):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(retention, "prune_by_cap", broken_prune)

    path = scheduler.take_snapshot("manual")

    assert path.exists()


@pytest.fixture
def unusable_scheduler(tmp_path, store_file):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    retention = SnapshotRetention(blocker / "backups")
    return BackupScheduler(database_path=store_file, retention=retention, keep_max=3, interval_seconds=0.01)


def test_unusable_backup_dir_is_reported_as_copy_failure(unusable_scheduler):
    with pytest.raises(CopyFailed):
        unusable_scheduler.take_snapshot("manual")
    assert unusable_scheduler.trigger_snapshot("interval") is None


def test_unusable_backup_dir_keeps_interval_task_alive(unusable_scheduler):
    async def run():
        unusable_scheduler.start()
        await asyncio.sleep(0.1)
        alive = unusable_scheduler.running
        await unusable_scheduler.stop()
        return alive

    assert asyncio.run(run()) is True


def test_signal_still_exits_when_snapshot_fails(unusable_scheduler):
    with pytest.raises(SystemExit) as exc_info:
        unusable_scheduler._handle_signal(signal.SIGTERM, None)
    assert exc_info.value.code == 0


def test_interval_snapshot_does_not_block_event_loop(scheduler):
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with scheduler._lock:
            held.set()
            release.wait(2)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    assert held.wait(1)

    async def run():
        scheduler.start()
        started = time.monotonic()
        await asyncio.sleep(0.1)
        elapsed = time.monotonic() - started
        release.set()
        await scheduler.stop()
        return elapsed

    try:
        elapsed = asyncio.run(run())
    finally:
        release.set()
        holder.join()

    assert elapsed < 1.0
