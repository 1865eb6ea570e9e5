"""Snapshot restoration.

A restore never starts without a safety net: the live state of every file
about to be overwritten is captured first as a ``pre-restore`` snapshot. If
that capture fails, nothing is touched. Files are then restored one by one,
each atomically (temporary file in the target directory, then rename), and
one file failing does not stop the others.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional, Protocol

from vps_bootstrap.config.registry import TrackedFileRegistry, normalize_path
from vps_bootstrap.domain.models import (
    FileOutcome,
    FileRecord,
    Origin,
    ReloadResult,
    RestoreSession,
    RestoreState,
    Snapshot,
)
from vps_bootstrap.logging import EventLogger, LoggerFactory
from vps_bootstrap.storage.catalog import SnapshotCatalog
from vps_bootstrap.storage.exceptions import (
    BackupOfCurrentStateFailedError,
    InvalidSnapshotError,
    RestoreFileFailedError,
    SnapshotError,
    UntrackedPathError,
)
from vps_bootstrap.storage.snapshot_store import SnapshotStore


class Notifier(Protocol):
    def notify(self, paths: Iterable[str]) -> list[ReloadResult]: ...


def restore_file(source: Path, entry: FileRecord) -> None:
    """Atomically replace ``entry.original_path`` with ``source``.

    The content lands in a temporary file next to the target, is renamed
    over it, and then mode, owner and group are re-applied.

    Raises:
        OSError: Any step failed; the temporary file is removed
    """
    target = Path(entry.original_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".restore", dir=target.parent
    )
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copyfile(source, tmp_path)
        shutil.copystat(source, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    os.chmod(target, entry.mode)
    current = os.stat(target)
    if (current.st_uid, current.st_gid) != (entry.owner, entry.group):
        os.chown(target, entry.owner, entry.group)


class RestoreEngine:
    """Drives a RestoreSession from selection to a terminal state."""

    def __init__(
        self,
        store: SnapshotStore,
        catalog: SnapshotCatalog,
        registry: TrackedFileRegistry,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.registry = registry
        self.notifier = notifier

    def restore(
        self, snapshot_id: str, paths: Optional[Iterable[str]] = None
    ) -> RestoreSession:
        """Restore tracked files from ``snapshot_id``.

        Args:
            snapshot_id: Catalog id of the snapshot to restore
            paths: Restrict the restore to these tracked paths

        Returns:
            The session in a terminal state: COMPLETED, PARTIALLY_FAILED, or
            ABORTED with ``session.error`` set
        """
        session = RestoreSession(snapshot_id=snapshot_id)
        log = LoggerFactory.for_restore()

        try:
            snapshot, targets = self._select(session, paths)
        except (InvalidSnapshotError, UntrackedPathError) as error:
            return self._abort(session, error, log)

        log.info(f"Creating pre-restore backup before restoring {snapshot.id}")
        try:
            session.pre_restore_snapshot = self.store.capture(
                [entry.original_path for entry in targets], Origin.PRE_RESTORE
            )
        except (SnapshotError, OSError) as error:
            failure = BackupOfCurrentStateFailedError(snapshot.id, str(error))
            return self._abort(session, failure, log)
        session.state = RestoreState.PRE_RESTORE_CAPTURED
        log.info(f"Pre-restore backup saved as {session.pre_restore_snapshot_id}")

        session.state = RestoreState.RESTORING
        for entry in targets:
            try:
                restore_file(snapshot.stored_path(entry), entry)
            except OSError as error:
                failure = RestoreFileFailedError(entry.original_path, str(error))
                log.error(str(failure))
                session.record(entry.original_path, FileOutcome.FAILED, failure.reason)
                continue
            session.record(entry.original_path, FileOutcome.RESTORED)
            EventLogger.log_file_restored(
                log, entry.original_path, FileOutcome.RESTORED.value, snapshot_id=snapshot.id
            )

        if session.failed:
            session.state = RestoreState.PARTIALLY_FAILED
            log.warning(
                f"Restore of {snapshot.id} partially failed: "
                f"{len(session.restored)} restored, {len(session.failed)} failed. "
                f"Pre-restore backup: {session.pre_restore_snapshot_id}"
            )
        else:
            session.state = RestoreState.COMPLETED
            log.success(f"Restored {len(session.restored)} file(s) from {snapshot.id}")

        self._notify(session, log)
        return session

    def _select(
        self, session: RestoreSession, paths: Optional[Iterable[str]]
    ) -> tuple[Snapshot, list[FileRecord]]:
        snapshot = self.catalog.load(session.snapshot_id)
        if not snapshot.entries:
            raise InvalidSnapshotError(snapshot.id, "snapshot contains no files")
        session.selected_snapshot = snapshot

        entries = list(snapshot.entries)
        if paths is not None:
            requested = self.registry.require(paths)
            captured = {entry.original_path for entry in entries}
            for path in requested:
                if path not in captured:
                    session.record(path, FileOutcome.SKIPPED, "not in snapshot")
            entries = [entry for entry in entries if entry.original_path in requested]

        targets: list[FileRecord] = []
        for entry in entries:
            if self.registry.contains(entry.original_path):
                targets.append(entry)
            else:
                session.record(
                    normalize_path(entry.original_path),
                    FileOutcome.SKIPPED,
                    "no longer in tracked-file registry",
                )
        if not targets:
            raise InvalidSnapshotError(snapshot.id, "no tracked files to restore")

        session.state = RestoreState.SNAPSHOT_SELECTED
        return snapshot, targets

    def _abort(self, session: RestoreSession, error: SnapshotError, log) -> RestoreSession:
        session.state = RestoreState.ABORTED
        session.error = error
        log.error(f"Restore of {session.snapshot_id} aborted: {error}")
        return session

    def _notify(self, session: RestoreSession, log) -> None:
        if self.notifier is None or not session.restored:
            return
        log.info("Reloading affected services...")
        try:
            session.notifications = self.notifier.notify(session.restored)
        except Exception as error:
            log.warning(f"Reload notification failed: {error}")
            session.notifications = [ReloadResult("reload", ok=False, detail=str(error))]
