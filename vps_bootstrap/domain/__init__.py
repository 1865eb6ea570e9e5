"""Domain models for configuration snapshot and restore operations.

This package contains type-safe domain objects shared by the snapshot
store, catalog, retention manager and restore engine.
"""

from __future__ import annotations

from .models import (
    CleanupResult,
    FileOutcome,
    FileRecord,
    FileResult,
    LockHandle,
    Origin,
    ReloadResult,
    RestoreSession,
    RestoreState,
    RetentionPolicy,
    Snapshot,
    SnapshotSummary,
)


__all__ = [
    "CleanupResult",
    "FileOutcome",
    "FileRecord",
    "FileResult",
    "LockHandle",
    "Origin",
    "ReloadResult",
    "RestoreSession",
    "RestoreState",
    "RetentionPolicy",
    "Snapshot",
    "SnapshotSummary",
]
