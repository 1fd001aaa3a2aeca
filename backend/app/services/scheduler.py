"""
File-copy backups of the live store: on an interval, on SIGINT/SIGTERM and on
operator request. Every successful copy is followed by a prune to keep_max.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
import threading
from pathlib import Path

from app.services.errors import CopyFailed
from app.services.retention import SnapshotRetention

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class BackupScheduler:
    def __init__(
        self,
        *,
        database_path: Path | str,
        retention: SnapshotRetention,
        keep_max: int,
        interval_seconds: float = 30 * 60,
    ) -> None:
        self.database_path = Path(database_path)
        self.retention = retention
        self.keep_max = keep_max
        self.interval_seconds = interval_seconds

        # Sync endpoints run in a threadpool; the timer and signal handlers run on the loop thread.
        self._lock = threading.RLock()
        self._task: asyncio.Task | None = None
        self._previous_handlers: dict[int, object] = {}

    def take_snapshot(self, reason: str = "manual") -> Path:
        """Copy the store file into the backup dir, then prune to keep_max. Raises CopyFailed."""
        with self._lock:
            target: Path | None = None
            try:
                target = self.retention.reserve_snapshot(reason)
                shutil.copy2(self.database_path, target)
            except OSError as e:
                if target is not None:
                    target.unlink(missing_ok=True)
                raise CopyFailed(f"Copy of {self.database_path} failed: {e}") from e
            logger.info("Snapshot written: %s", target.name, extra={"snapshot": target.name, "reason": reason})

            try:
                self.retention.prune_by_cap(self.keep_max)
            except OSError as e:
                logger.warning("Snapshot %s written but pruning failed: %s", target.name, e)
            return target

    def trigger_snapshot(self, reason: str) -> Path | None:
        """Best-effort take_snapshot(): failures are logged and reported as None."""
        try:
            return self.take_snapshot(reason)
        except CopyFailed as e:
            logger.error("Backup (%s) produced no snapshot: %s", reason, e)
        except Exception:
            logger.exception("Backup (%s) failed unexpectedly", reason)
        return None

    # ---- interval trigger ------------------------------------------------

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            # The copy and the lock wait happen off the loop thread.
            await asyncio.to_thread(self.trigger_snapshot, "interval")

    def start(self) -> None:
        """Start the interval task on the running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("Backup scheduler already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Backup scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Backup scheduler stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---- signal trigger --------------------------------------------------

    def install_signal_handlers(self, signals: tuple[int, ...] = DEFAULT_SIGNALS) -> bool:
        """
        Snapshot on termination signals, then hand over to whatever handler was
        installed before (e.g. the ASGI server's), or exit if there was none.
        Signal handlers can only be set from the main thread.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.info("Not on the main thread; signal-triggered backups disabled")
            return False
        for sig in signals:
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)
        return True

    def restore_signal_handlers(self) -> None:
        if threading.current_thread() is threading.main_thread():
            for sig, previous in self._previous_handlers.items():
                if previous is not None:
                    signal.signal(sig, previous)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame) -> None:  # noqa: ANN001
        name = signal.Signals(signum).name.lower()
        logger.info("Received %s, taking a backup before exit", name.upper())
        self.trigger_snapshot(name)

        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
            return
        raise SystemExit(0)
