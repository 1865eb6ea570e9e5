"""Custom exceptions for snapshot and restore operations.

This module defines a hierarchy of exceptions for the configuration snapshot
subsystem so that callers can tell fatal failures (lock contention, broken
captures, missing safety snapshots) apart from failures confined to a single
file or a single snapshot.

Exception Hierarchy:
    SnapshotError (base)
        ├── AlreadyRunningError
        ├── UntrackedPathError
        ├── InvalidSnapshotError
        ├── CaptureError
        │   ├── CaptureFailedError
        │   └── BackupOfCurrentStateFailedError
        ├── RestoreFileFailedError
        └── DeletionFailedError

Usage:
    from vps_bootstrap.storage.exceptions import UntrackedPathError

    if path not in registry:
        raise UntrackedPathError([path])
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable


class SnapshotError(Exception):
    """Base exception for all snapshot operations."""


class AlreadyRunningError(SnapshotError):
    """Another provisioning or restore process holds the lock."""

    def __init__(self, holder_pid: int, lock_path: Path | str):
        self.holder_pid = holder_pid
        self.lock_path = Path(lock_path)
        super().__init__(
            f"Another instance is already running (PID: {holder_pid}). "
            f"If no other instance is active, remove {self.lock_path} "
            f"or use --force"
        )


class UntrackedPathError(SnapshotError):
    """Operation requested on paths outside the tracked-file registry."""

    def __init__(self, paths: Iterable[str]):
        self.paths = sorted(str(path) for path in paths)
        super().__init__(f"Path(s) not in tracked-file registry: {', '.join(self.paths)}")


class InvalidSnapshotError(SnapshotError):
    """Selected snapshot is missing, incomplete or empty."""

    def __init__(self, snapshot_id: str, reason: str):
        self.snapshot_id = snapshot_id
        self.reason = reason
        super().__init__(f"Invalid snapshot {snapshot_id}: {reason}")


class CaptureError(SnapshotError):
    """Base exception for capture failures."""


class CaptureFailedError(CaptureError):
    """I/O error while writing a snapshot; the partial directory was removed."""

    def __init__(self, reason: str, path: str | None = None):
        self.path = path
        self.reason = reason
        msg = "Snapshot capture failed"
        if path:
            msg += f" at {path}"
        super().__init__(f"{msg}: {reason}")


class BackupOfCurrentStateFailedError(CaptureError):
    """Pre-restore safety snapshot could not be created."""

    def __init__(self, snapshot_id: str, reason: str):
        self.snapshot_id = snapshot_id
        self.reason = reason
        super().__init__(
            f"Could not back up current state before restoring {snapshot_id}: "
            f"{reason}. No live file was modified"
        )


class RestoreFileFailedError(SnapshotError):
    """A single file could not be restored."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to restore {path}: {reason}")


class DeletionFailedError(SnapshotError):
    """Retention could not remove one snapshot."""

    def __init__(self, snapshot_id: str, reason: str):
        self.snapshot_id = snapshot_id
        self.reason = reason
        super().__init__(f"Failed to remove snapshot {snapshot_id}: {reason}")
