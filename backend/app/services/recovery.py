"""Startup recovery: reclaim snapshot space when the store cannot initialise because the disk is full."""

from __future__ import annotations

import errno
import logging
from collections.abc import Callable, Iterator
from typing import TypeVar

from tenacity import RetryCallState, Retrying, stop_after_attempt

from app.services.errors import DiskFull
from app.services.retention import SnapshotRetention

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Primary result code; extended codes carry it in the low byte.
SQLITE_FULL = 13
DISK_FULL_MARKERS = ("disk is full", "no space")


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    """exc, the DBAPI error SQLAlchemy wraps (`.orig`), and its cause/context chain."""
    seen: set[int] = set()
    stack: list[object] = [exc]
    while stack:
        e = stack.pop()
        if not isinstance(e, BaseException) or id(e) in seen:
            continue
        seen.add(id(e))
        yield e
        stack.extend([getattr(e, "orig", None), e.__cause__, e.__context__])


def is_disk_full(exc: BaseException) -> bool:
    for e in _error_chain(exc):
        if isinstance(e, OSError) and e.errno == errno.ENOSPC:
            return True
        code = getattr(e, "sqlite_errorcode", None)
        if isinstance(code, int) and code & 0xFF == SQLITE_FULL:
            return True
        msg = str(e).lower()
        if any(marker in msg for marker in DISK_FULL_MARKERS):
            return True
    return False


def init_store_with_recovery(init: Callable[[], T], retention: SnapshotRetention, *, keep_min: int = 1) -> T:
    """
    Run `init`. If it fails because the disk is full, delete the newest half
    of the snapshots and run it exactly once more.

    Errors that are not disk-full propagate unchanged. If nothing could be
    pruned, or the second attempt fails too, DiskFull is raised with the
    original error as its cause.
    """
    disk_full: list[BaseException] = []

    def _reclaim_space(retry_state: RetryCallState) -> bool:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return False
        if retry_state.attempt_number > 1:
            logger.error("Store initialization failed again after emergency prune: %s", exc)
            return False
        if not is_disk_full(exc):
            return False

        disk_full.append(exc)
        logger.warning("Store initialization failed, disk is full: %s", exc)
        deleted = retention.prune_emergency(keep_min=keep_min)
        if not deleted:
            logger.error("No snapshots to reclaim space from")
            return False
        logger.warning("Retrying store initialization after deleting %d snapshots", len(deleted))
        return True

    retrying = Retrying(stop=stop_after_attempt(2), retry=_reclaim_space, reraise=True)
    try:
        return retrying(init)
    except Exception:
        if disk_full:
            raise DiskFull(f"Store initialization failed, disk is full: {disk_full[0]}") from disk_full[0]
        raise
