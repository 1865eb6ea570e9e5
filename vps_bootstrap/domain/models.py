"""Domain model for configuration snapshot and restore operations.

Type-safe objects passed between the snapshot store, the catalog, the
retention manager and the restore engine instead of raw paths and dicts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


SNAPSHOT_ID_FORMAT = "%Y%m%d-%H%M%S"
SNAPSHOT_ID_PATTERN = re.compile(r"^\d{8}-\d{6}(?:-\d{3})?$")
COMPLETE_MARKER = ".complete"


def is_snapshot_id(name: str) -> bool:
    """Check whether a directory name looks like a snapshot id."""
    return bool(SNAPSHOT_ID_PATTERN.match(name))


def parse_snapshot_time(snapshot_id: str) -> datetime | None:
    """Recover the creation time encoded in a snapshot id."""
    try:
        return datetime.strptime(snapshot_id[:15], SNAPSHOT_ID_FORMAT)
    except ValueError:
        return None


def relative_path_for(original_path: str) -> str:
    """Map an absolute path to its location under a snapshot directory.

    The leading separator is dropped, so ``/etc/fstab`` becomes ``etc/fstab``.
    Absolute paths are unique, so the mapping is one-to-one.
    """
    if not original_path.startswith("/"):
        raise ValueError(f"Tracked paths must be absolute: {original_path}")
    return original_path.lstrip("/")


def original_path_for(relative_path: str) -> str:
    """Inverse of :func:`relative_path_for`."""
    return "/" + relative_path.lstrip("/")


# ==============================================================================
# Snapshot Domain
# ==============================================================================


class Origin(Enum):
    """Why a snapshot was taken."""

    SCHEDULED = "scheduled"  # Before provisioning edits a tracked file
    PRE_RESTORE = "pre-restore"  # Safety net right before a restore

    @classmethod
    def parse(cls, value: str | None) -> Origin:
        for origin in cls:
            if origin.value == value:
                return origin
        return cls.SCHEDULED


@dataclass(frozen=True)
class FileRecord:
    """One captured file and the metadata restored with it."""

    original_path: str  # e.g., "/etc/fstab"
    relative_path: str  # e.g., "etc/fstab"
    mode: int  # Permission bits (st_mode & 0o7777)
    owner: int  # uid
    group: int  # gid
    size_bytes: int

    @property
    def mode_octal(self) -> str:
        return f"{self.mode:04o}"


@dataclass(frozen=True)
class Snapshot:
    """A point-in-time copy of tracked configuration files."""

    id: str  # e.g., "20261018-142501"
    directory: Path
    origin: Origin
    created_at: datetime
    entries: tuple[FileRecord, ...] = ()

    @property
    def original_paths(self) -> list[str]:
        return [entry.original_path for entry in self.entries]

    @property
    def size_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.entries)

    @property
    def marker_path(self) -> Path:
        return self.directory / COMPLETE_MARKER

    def stored_path(self, entry: FileRecord) -> Path:
        """Location of the captured copy of ``entry`` inside this snapshot."""
        return self.directory / entry.relative_path


@dataclass(frozen=True)
class SnapshotSummary:
    """Catalog view of a snapshot (metadata only, no file contents)."""

    id: str
    origin: Origin
    created_at: datetime
    directory: Path
    paths: tuple[str, ...]
    size_bytes: int

    @property
    def file_count(self) -> int:
        return len(self.paths)

    def format_label(self) -> str:
        """Format a one-line label for numbered listings.

        Returns: e.g., "20261018-142501 (scheduled, 3 files, 4.2KB)"
        """
        return (
            f"{self.id} ({self.origin.value}, {self.file_count} files, "
            f"{format_size(self.size_bytes)})"
        )


# ==============================================================================
# Retention Domain
# ==============================================================================


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep only the newest ``max_snapshots`` snapshots."""

    max_snapshots: int = 5

    def __post_init__(self) -> None:
        if self.max_snapshots < 0:
            raise ValueError(
                f"max_snapshots must be zero or positive, got {self.max_snapshots}"
            )


@dataclass
class CleanupResult:
    """Outcome of one retention run."""

    deleted: list[str] = field(default_factory=list)
    bytes_freed: int = 0
    failed: dict[str, str] = field(default_factory=dict)
    incomplete_removed: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


# ==============================================================================
# Restore Domain
# ==============================================================================


class RestoreState(Enum):
    """Restore session lifecycle."""

    IDLE = "idle"
    SNAPSHOT_SELECTED = "snapshot-selected"
    PRE_RESTORE_CAPTURED = "pre-restore-captured"
    RESTORING = "restoring"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially-failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RestoreState.COMPLETED,
            RestoreState.PARTIALLY_FAILED,
            RestoreState.ABORTED,
        )


class FileOutcome(Enum):
    """Per-file restore result."""

    RESTORED = "restored"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FileResult:
    outcome: FileOutcome
    detail: str = ""


@dataclass(frozen=True)
class ReloadResult:
    """Result of one post-restore reload signal."""

    name: str
    ok: bool
    detail: str = ""


@dataclass
class RestoreSession:
    """State of one restore run.

    The selected snapshot is only ever read; the pre-restore snapshot is the
    safety net surfaced to the user when anything goes wrong.
    """

    snapshot_id: str
    state: RestoreState = RestoreState.IDLE
    selected_snapshot: Snapshot | None = None
    pre_restore_snapshot: Snapshot | None = None
    per_file_results: dict[str, FileResult] = field(default_factory=dict)
    notifications: list[ReloadResult] = field(default_factory=list)
    error: Exception | None = None

    def record(self, path: str, outcome: FileOutcome, detail: str = "") -> None:
        self.per_file_results[path] = FileResult(outcome=outcome, detail=detail)

    def paths_with(self, outcome: FileOutcome) -> list[str]:
        return [
            path
            for path, result in self.per_file_results.items()
            if result.outcome is outcome
        ]

    @property
    def restored(self) -> list[str]:
        return self.paths_with(FileOutcome.RESTORED)

    @property
    def failed(self) -> list[str]:
        return self.paths_with(FileOutcome.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.paths_with(FileOutcome.SKIPPED)

    @property
    def pre_restore_snapshot_id(self) -> str | None:
        if self.pre_restore_snapshot is None:
            return None
        return self.pre_restore_snapshot.id

    @property
    def succeeded(self) -> bool:
        return self.state is RestoreState.COMPLETED


# ==============================================================================
# Lock Domain
# ==============================================================================


@dataclass(frozen=True)
class LockHandle:
    """Proof of holding the single-instance lock.

    Returned by ``LockCoordinator.acquire()`` and passed to ``release()``
    instead of living in module-level state.
    """

    path: Path
    holder_pid: int
    acquired_at: datetime
    forced: bool = False
    reclaimed_pid: int | None = None  # Stale or overridden previous holder


def format_size(size_bytes: int) -> str:
    """Human readable size, e.g. ``512B``, ``4.2KB``, ``1.5MB``."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(size)}{unit}"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"
