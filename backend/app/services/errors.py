"""Errors raised by the snapshot, restore and retention services."""

from __future__ import annotations


class BackupError(RuntimeError):
    pass


class IntrospectionFailed(BackupError):
    """Store metadata (tables/columns) could not be read."""


class InvalidDocument(BackupError):
    """A logical backup payload is not a well-formed export document."""


class UnsafeFilename(BackupError):
    """A snapshot name was rejected before touching the filesystem."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Invalid snapshot filename: {name!r}")
        self.name = name


class CopyFailed(BackupError):
    """The raw copy of the store file failed."""


class DiskFull(BackupError):
    """
    Store initialization failed for lack of disk space and the emergency prune
    could not recover it. The original error is chained as __cause__.
    """
