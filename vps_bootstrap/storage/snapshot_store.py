"""Snapshot capture.

Each capture writes a new directory ``<backup-root>/<id>/`` that mirrors the
absolute paths of the captured files (``/etc/fstab`` is stored at
``<backup-root>/<id>/etc/fstab``) with mode, owner and group preserved. The
``.complete`` marker is written last; a directory without it is an aborted or
in-flight capture and is never listed by the catalog.
"""
from __future__ import annotations

import json
import os
import shutil
import stat
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from vps_bootstrap.config.registry import TrackedFileRegistry
from vps_bootstrap.domain.models import (
    COMPLETE_MARKER,
    SNAPSHOT_ID_FORMAT,
    FileRecord,
    Origin,
    Snapshot,
    relative_path_for,
)
from vps_bootstrap.logging import EventLogger, LoggerFactory
from vps_bootstrap.storage.exceptions import CaptureFailedError

MAX_DISAMBIGUATOR = 999


def write_marker(directory: Path, payload: dict) -> None:
    """Write the completion marker atomically."""
    marker = directory / COMPLETE_MARKER
    tmp_marker = directory / f"{COMPLETE_MARKER}.tmp"
    tmp_marker.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp_marker, marker)


class SnapshotStore:
    """Creates snapshots of tracked files under ``root``."""

    def __init__(
        self,
        root: Path | str,
        registry: TrackedFileRegistry,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.root = Path(root)
        self.registry = registry
        self.clock = clock

    def capture(
        self,
        paths: Optional[Iterable[str]] = None,
        origin: Origin = Origin.SCHEDULED,
        *,
        dry_run: bool = False,
    ) -> Snapshot:
        """Capture the current content of ``paths`` into a new snapshot.

        Args:
            paths: Absolute paths to capture; None captures the whole registry
            origin: Why the snapshot is taken
            dry_run: Only report what would be captured

        Returns:
            The completed Snapshot (unsaved when ``dry_run``)

        Raises:
            UntrackedPathError: A path is not in the registry (nothing written)
            CaptureFailedError: I/O error; the partial directory was removed
        """
        requested = self.registry.require(self.registry.paths if paths is None else paths)
        log = LoggerFactory.for_snapshot()

        if dry_run:
            return self._plan(requested, origin, log)

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise CaptureFailedError(str(error), path=str(self.root)) from error

        snapshot_id, directory = self._reserve_directory()
        log.bind(origin=origin.value).debug(
            f"Capturing {len(requested)} path(s) into {directory}"
        )

        current_path: str | None = None
        try:
            entries: list[FileRecord] = []
            for current_path in requested:
                entry = self._copy_into(directory, current_path, log)
                if entry is not None:
                    entries.append(entry)
            current_path = None
            created_at = self.clock()
            write_marker(
                directory,
                {
                    "id": snapshot_id,
                    "origin": origin.value,
                    "created_at": created_at.isoformat(),
                    "requested_paths": requested,
                },
            )
        except OSError as error:
            self._discard(directory, log)
            log.error(f"Snapshot {snapshot_id} aborted: {error}")
            raise CaptureFailedError(str(error), path=current_path) from error

        snapshot = Snapshot(
            id=snapshot_id,
            directory=directory,
            origin=origin,
            created_at=created_at,
            entries=tuple(entries),
        )
        EventLogger.log_snapshot_captured(
            log, snapshot.id, origin.value, len(entries), snapshot.size_bytes
        )
        return snapshot

    def _plan(self, requested: list[str], origin: Origin, log) -> Snapshot:
        entries = []
        for path in requested:
            try:
                st = os.stat(path)
            except FileNotFoundError:
                log.info(f"[DRY-RUN] File does not exist: {path} (skip backup)")
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            log.info(f"[DRY-RUN] Would back up file: {path}")
            entries.append(_record_from_stat(path, st))
        now = self.clock()
        snapshot_id = now.strftime(SNAPSHOT_ID_FORMAT)
        return Snapshot(
            id=snapshot_id,
            directory=self.root / snapshot_id,
            origin=origin,
            created_at=now,
            entries=tuple(entries),
        )

    def _reserve_directory(self) -> tuple[str, Path]:
        """Pick the next free id and create its directory.

        Ids that share a second get a ``-001``, ``-002``... suffix that keeps
        increasing even if earlier ones were pruned, so ids sort by creation.
        """
        base = self.clock().strftime(SNAPSHOT_ID_FORMAT)
        seq = self._next_sequence(base)
        while seq <= MAX_DISAMBIGUATOR:
            snapshot_id = base if seq == 0 else f"{base}-{seq:03d}"
            directory = self.root / snapshot_id
            try:
                directory.mkdir()
            except FileExistsError:
                seq += 1
                continue
            except OSError as error:
                raise CaptureFailedError(str(error), path=str(directory)) from error
            return snapshot_id, directory
        raise CaptureFailedError(f"no free snapshot id left for {base}")

    def _next_sequence(self, base: str) -> int:
        highest = -1
        try:
            names = [entry.name for entry in self.root.iterdir()]
        except OSError:
            return 0
        for name in names:
            if name == base:
                highest = max(highest, 0)
            elif name.startswith(f"{base}-"):
                suffix = name[len(base) + 1 :]
                if suffix.isdigit():
                    highest = max(highest, int(suffix))
        return highest + 1

    def _copy_into(self, directory: Path, path: str, log) -> FileRecord | None:
        try:
            st = os.stat(path)
        except FileNotFoundError:
            log.debug(f"Skipping missing file: {path}")
            return None
        if not stat.S_ISREG(st.st_mode):
            log.warning(f"Skipping non-regular file: {path}")
            return None

        destination = directory / relative_path_for(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, destination)
        copied = os.stat(destination)
        if (copied.st_uid, copied.st_gid) != (st.st_uid, st.st_gid):
            os.chown(destination, st.st_uid, st.st_gid)
        log.bind(size_bytes=st.st_size).debug(f"Backed up: {path}")
        return _record_from_stat(path, st)

    def _discard(self, directory: Path, log) -> None:
        shutil.rmtree(directory, ignore_errors=True)
        if directory.exists():
            log.error(
                f"Could not remove partial snapshot {directory}; "
                f"it stays incomplete and will be collected by cleanup"
            )


def _record_from_stat(path: str, st: os.stat_result) -> FileRecord:
    return FileRecord(
        original_path=path,
        relative_path=relative_path_for(path),
        mode=stat.S_IMODE(st.st_mode),
        owner=st.st_uid,
        group=st.st_gid,
        size_bytes=st.st_size,
    )
