"""Keep-last-N pruning of snapshots."""

from __future__ import annotations

import shutil
from pathlib import Path

from vps_bootstrap.domain.models import (
    COMPLETE_MARKER,
    CleanupResult,
    RetentionPolicy,
    SnapshotSummary,
)
from vps_bootstrap.logging import EventLogger, LoggerFactory
from vps_bootstrap.storage.catalog import SnapshotCatalog
from vps_bootstrap.storage.exceptions import DeletionFailedError


log = LoggerFactory.for_retention()


def remove_snapshot_dir(directory: Path, marker_first: bool = True) -> None:
    """Delete one snapshot directory.

    The marker goes first so the snapshot leaves the catalog in one step; if
    the tree removal then fails, what remains is an incomplete directory.

    Raises:
        OSError: Marker or tree could not be removed
    """
    if marker_first:
        try:
            (directory / COMPLETE_MARKER).unlink()
        except FileNotFoundError:
            pass
    shutil.rmtree(directory)


class RetentionManager:
    """Applies a RetentionPolicy to the snapshots in a catalog."""

    def __init__(self, catalog: SnapshotCatalog):
        self.catalog = catalog

    def cleanup(self, policy: RetentionPolicy, *, dry_run: bool = False) -> CleanupResult:
        """Delete every snapshot older than the newest ``max_snapshots``.

        Incomplete directories are removed as well. A snapshot that cannot be
        removed is recorded in ``failed`` and the run continues.
        """
        result = CleanupResult(dry_run=dry_run)
        summaries = self.catalog.list()
        log.info(f"Keeping last {policy.max_snapshots} backups ({len(summaries)} found)")

        self._collect_incomplete(result, dry_run)

        if len(summaries) <= policy.max_snapshots:
            log.info(f"Only {len(summaries)} backup(s) found. Nothing to cleanup.")
            return result

        expired = sorted(summaries[policy.max_snapshots :], key=lambda summary: summary.id)
        for summary in expired:
            self._delete(summary, result, dry_run)

        log.bind(failed=len(result.failed)).success(
            f"Removed {len(result.deleted)} old backup(s), freed {result.bytes_freed} bytes"
        )
        return result

    def _delete(self, summary: SnapshotSummary, result: CleanupResult, dry_run: bool) -> None:
        size = summary.size_bytes
        if dry_run:
            log.info(f"[DRY-RUN] Would remove: {summary.id} ({size} bytes)")
            result.deleted.append(summary.id)
            result.bytes_freed += size
            return
        try:
            remove_snapshot_dir(summary.directory)
        except OSError as error:
            failure = DeletionFailedError(summary.id, str(error))
            log.error(str(failure))
            result.failed[summary.id] = failure.reason
            return
        EventLogger.log_snapshot_deleted(log, summary.id, size, origin=summary.origin.value)
        result.deleted.append(summary.id)
        result.bytes_freed += size

    def _collect_incomplete(self, result: CleanupResult, dry_run: bool) -> None:
        for directory in self.catalog.incomplete():
            if dry_run:
                log.info(f"[DRY-RUN] Would remove incomplete snapshot: {directory.name}")
                result.incomplete_removed.append(directory.name)
                continue
            try:
                remove_snapshot_dir(directory, marker_first=False)
            except OSError as error:
                log.warning(f"Failed to remove incomplete snapshot {directory}: {error}")
                continue
            log.info(f"Removed incomplete snapshot: {directory.name}")
            result.incomplete_removed.append(directory.name)
