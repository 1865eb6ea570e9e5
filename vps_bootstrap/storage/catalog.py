"""Snapshot discovery.

The catalog has no index of its own: every call walks the backup root, so
what it reports is always what is on disk.
"""

from __future__ import annotations

import json
import os
import stat
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from vps_bootstrap.domain.models import (
    COMPLETE_MARKER,
    FileRecord,
    Origin,
    Snapshot,
    SnapshotSummary,
    is_snapshot_id,
    original_path_for,
    parse_snapshot_time,
)
from vps_bootstrap.storage.exceptions import InvalidSnapshotError


def read_marker(directory: Path) -> Optional[dict]:
    """Read the completion marker, or None if the snapshot is incomplete.

    A marker that exists but cannot be read or parsed still marks the snapshot as
    complete; an empty dict is returned so callers fall back to defaults.
    """
    marker = directory / COMPLETE_MARKER
    try:
        content = marker.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.bind(tags=["snapshot", "catalog"]).warning(f"Cannot read marker {marker}: {exc}")
        return {}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def iter_stored_files(directory: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``(relative_path, stored_path)`` for every captured file."""
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for filename in sorted(filenames):
            stored = Path(dirpath) / filename
            relative = stored.relative_to(directory).as_posix()
            if relative == COMPLETE_MARKER or relative.startswith(f"{COMPLETE_MARKER}."):
                continue
            yield relative, stored


def directory_size(directory: Path) -> int:
    """Total bytes of regular files below ``directory`` (marker included)."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(directory):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def _created_at(snapshot_id: str, marker: dict, directory: Path) -> datetime:
    value = marker.get("created_at")
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    parsed = parse_snapshot_time(snapshot_id)
    if parsed is not None:
        return parsed
    return datetime.fromtimestamp(directory.stat().st_mtime)


class SnapshotCatalog:
    """Lists, loads and describes snapshots stored under ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _candidate_dirs(self) -> list[Path]:
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        return [
            entry for entry in entries if entry.is_dir() and not entry.is_symlink()
        ]

    def list(self) -> list[SnapshotSummary]:
        """Complete snapshots, newest first by id."""
        summaries: list[SnapshotSummary] = []
        for directory in self._candidate_dirs():
            if not is_snapshot_id(directory.name):
                continue
            marker = read_marker(directory)
            if marker is None:
                continue
            paths = tuple(
                original_path_for(relative) for relative, _ in iter_stored_files(directory)
            )
            summaries.append(
                SnapshotSummary(
                    id=directory.name,
                    origin=Origin.parse(marker.get("origin")),
                    created_at=_created_at(directory.name, marker, directory),
                    directory=directory,
                    paths=paths,
                    size_bytes=directory_size(directory),
                )
            )
        summaries.sort(key=lambda summary: summary.id, reverse=True)
        return summaries

    def incomplete(self) -> list[Path]:
        """Directories without a completion marker, oldest first.

        These are interrupted captures or leftovers of failed deletions and
        can be garbage-collected by retention.
        """
        leftovers = [
            directory
            for directory in self._candidate_dirs()
            if is_snapshot_id(directory.name) and read_marker(directory) is None
        ]
        return sorted(leftovers, key=lambda directory: directory.name)

    def get(self, snapshot_id: str) -> Optional[SnapshotSummary]:
        for summary in self.list():
            if summary.id == snapshot_id:
                return summary
        return None

    def load(self, snapshot_id: str) -> Snapshot:
        """Load a complete snapshot with its file records.

        Raises:
            InvalidSnapshotError: Unknown id, missing directory or no marker
        """
        if not is_snapshot_id(snapshot_id):
            raise InvalidSnapshotError(snapshot_id, "not a snapshot id")
        directory = self.root / snapshot_id
        if not directory.is_dir():
            raise InvalidSnapshotError(snapshot_id, f"directory not found: {directory}")
        marker = read_marker(directory)
        if marker is None:
            raise InvalidSnapshotError(snapshot_id, "snapshot is incomplete (no .complete marker)")

        entries = []
        for relative, stored in iter_stored_files(directory):
            st = os.lstat(stored)
            if not stat.S_ISREG(st.st_mode):
                continue
            entries.append(
                FileRecord(
                    original_path=original_path_for(relative),
                    relative_path=relative,
                    mode=stat.S_IMODE(st.st_mode),
                    owner=st.st_uid,
                    group=st.st_gid,
                    size_bytes=st.st_size,
                )
            )
        return Snapshot(
            id=snapshot_id,
            directory=directory,
            origin=Origin.parse(marker.get("origin")),
            created_at=_created_at(snapshot_id, marker, directory),
            entries=tuple(entries),
        )

    def describe(self, snapshot_id: str) -> list[str]:
        """Human readable listing of a snapshot's files."""
        snapshot = self.load(snapshot_id)
        lines = [
            f"Snapshot: {snapshot.id}",
            f"Origin:   {snapshot.origin.value}",
            f"Date:     {snapshot.created_at:%Y-%m-%d %H:%M:%S}",
            f"Path:     {snapshot.directory}",
            f"Files:    {len(snapshot.entries)}",
        ]
        for entry in snapshot.entries:
            lines.append(
                f"  {entry.mode_octal} {entry.owner}:{entry.group} "
                f"{entry.size_bytes:>8}  {entry.original_path}"
            )
        return lines
