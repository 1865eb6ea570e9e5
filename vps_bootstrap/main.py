import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from vps_bootstrap.config import settings
from vps_bootstrap.config.registry import TrackedFileRegistry, load_registry
from vps_bootstrap.domain.models import RetentionPolicy, format_size
from vps_bootstrap.logging import get_logger, operation_context, setup_logging
from vps_bootstrap.services.reload import ReloadNotifier, default_actions
from vps_bootstrap.storage.catalog import SnapshotCatalog
from vps_bootstrap.storage.exceptions import (
    AlreadyRunningError,
    InvalidSnapshotError,
    SnapshotError,
)
from vps_bootstrap.storage.lock import LockCoordinator
from vps_bootstrap.storage.restore import RestoreEngine
from vps_bootstrap.storage.retention import RetentionManager
from vps_bootstrap.storage.snapshot_store import SnapshotStore
from vps_bootstrap.ui import prompts


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOCKED = 2
EXIT_INTERRUPTED = 130


@dataclass
class Components:
    registry: TrackedFileRegistry
    store: SnapshotStore
    catalog: SnapshotCatalog
    retention: RetentionManager
    engine: RestoreEngine
    lock: LockCoordinator


def build_components(args: argparse.Namespace) -> Components:
    backup_root = Path(args.backup_root or settings.get_setting("backup_root"))
    lock_path = Path(args.lock_file or settings.get_setting("lock_path"))
    registry = load_registry(args.registry)
    store = SnapshotStore(backup_root, registry)
    catalog = SnapshotCatalog(backup_root)
    notifier = None
    if not getattr(args, "no_reload", False):
        notifier = ReloadNotifier(default_actions(settings.get_setting("dev_user")))
    return Components(
        registry=registry,
        store=store,
        catalog=catalog,
        retention=RetentionManager(catalog),
        engine=RestoreEngine(store, catalog, registry, notifier),
        lock=LockCoordinator(lock_path),
    )


def cmd_capture(args: argparse.Namespace, components: Components) -> int:
    paths = args.paths or None
    if args.dry_run:
        snapshot = components.store.capture(paths, dry_run=True)
        print(f"[DRY-RUN] Would capture {len(snapshot.entries)} file(s):")
        for entry in snapshot.entries:
            print(f"  {entry.original_path}")
        return EXIT_OK
    with components.lock.hold(force=args.force):
        with operation_context("capture", paths=len(paths or components.registry)):
            snapshot = components.store.capture(paths)
    print(f"Backup directory: {snapshot.directory}")
    for entry in snapshot.entries:
        print(f"Backed up: {entry.original_path}")
    print(
        f"Snapshot {snapshot.id}: {len(snapshot.entries)} file(s), "
        f"{format_size(snapshot.size_bytes)}"
    )
    return EXIT_OK


def cmd_list_backups(args: argparse.Namespace, components: Components) -> int:
    try:
        summaries = components.catalog.list()
    except OSError as error:
        log = get_logger(source="cli")
        log.warning(f"Cannot read backup root {components.catalog.root}: {error}")
        summaries = []
    prompts.render_snapshot_list(summaries)
    return EXIT_OK


def cmd_show_backup(args: argparse.Namespace, components: Components) -> int:
    for line in components.catalog.describe(args.snapshot_id):
        print(line)
    return EXIT_OK


def cmd_restore(
    args: argparse.Namespace,
    components: Components,
    input_func: Optional[Callable[[str], str]] = None,
) -> int:
    input_func = input_func or input
    with components.lock.hold(force=args.force):
        if args.snapshot:
            snapshot_id = args.snapshot
        else:
            summaries = components.catalog.list()
            prompts.render_snapshot_list(summaries)
            if not summaries:
                return EXIT_FAILURE
            summary = prompts.select_snapshot(summaries, input_func=input_func)
            if summary is None:
                print("Cancelled")
                return EXIT_OK
            snapshot_id = summary.id
            print(f"Selected: {summary.format_label()}")

        try:
            lines = components.catalog.describe(snapshot_id)
        except InvalidSnapshotError as error:
            print(f"Error: {error}", file=sys.stderr)
            return EXIT_FAILURE
        print("")
        for line in lines:
            print(line)
        print("")
        if args.path:
            prompts.render_file_list(args.path)

        if not args.yes and not prompts.confirm("Proceed with restore?", input_func=input_func):
            print("Restore cancelled")
            return EXIT_OK

        with operation_context("restore", snapshot_id=snapshot_id) as log:
            session = components.engine.restore(snapshot_id, paths=args.path)
            log.info(f"Restore session ended as {session.state.value}")

    prompts.render_restore_summary(session)
    return EXIT_OK if session.succeeded else EXIT_FAILURE


def cmd_cleanup_backups(args: argparse.Namespace, components: Components) -> int:
    keep = args.keep
    if keep is None:
        keep = settings.get_int("max_snapshots", settings.DEFAULT_MAX_SNAPSHOTS)
    policy = RetentionPolicy(max_snapshots=keep)
    print("=== Cleanup Old Backups ===")
    print(f"Keeping last {policy.max_snapshots} backups...")
    with components.lock.hold(force=args.force):
        with operation_context("cleanup", keep=policy.max_snapshots):
            result = components.retention.cleanup(policy, dry_run=args.dry_run)

    prefix = "[DRY-RUN] Would remove" if result.dry_run else "Removed"
    for snapshot_id in result.deleted:
        print(f"{prefix}: {snapshot_id}")
    for name in result.incomplete_removed:
        print(f"{prefix} incomplete: {name}")
    for snapshot_id, reason in result.failed.items():
        print(f"Failed to remove: {snapshot_id} ({reason})", file=sys.stderr)
    print(f"{prefix} {len(result.deleted)} old backup(s)")
    print(f"Freed {result.bytes_freed} bytes ({format_size(result.bytes_freed)})")
    return EXIT_OK if result.ok else EXIT_FAILURE


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from error
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be zero or positive: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vps-bootstrap",
        description="Snapshot and restore tracked workstation configuration files",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output")
    parser.add_argument("--settings", type=Path, help="Settings JSON file")
    parser.add_argument("--backup-root", type=Path, help="Directory holding snapshots")
    parser.add_argument("--lock-file", type=Path, help="Single-instance lock file")
    parser.add_argument("--registry", type=Path, help="Tracked-file registry (one path per line)")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument(
        "--force", action="store_true", help="Take the lock even if another instance holds it"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    capture = subparsers.add_parser("capture", help="Snapshot tracked files before editing them")
    capture.add_argument("paths", nargs="*", help="Tracked paths (default: whole registry)")
    capture.add_argument("--dry-run", action="store_true", help="Show what would be captured")
    capture.set_defaults(handler=cmd_capture)

    list_backups = subparsers.add_parser("list-backups", help="List snapshots, newest first")
    list_backups.set_defaults(handler=cmd_list_backups)

    show_backup = subparsers.add_parser("show-backup", help="Show the files in one snapshot")
    show_backup.add_argument("snapshot_id")
    show_backup.set_defaults(handler=cmd_show_backup)

    restore = subparsers.add_parser("restore", help="Interactively restore a snapshot")
    restore.add_argument("--snapshot", help="Snapshot id (skips the selection prompt)")
    restore.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    restore.add_argument(
        "--path", action="append", help="Only restore this tracked path (repeatable)"
    )
    restore.add_argument(
        "--no-reload", action="store_true", help="Do not reload affected services"
    )
    restore.set_defaults(handler=cmd_restore)

    cleanup = subparsers.add_parser("cleanup-backups", help="Keep only the newest N snapshots")
    cleanup.add_argument("keep", nargs="?", type=_non_negative_int, help="Snapshots to keep")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be removed")
    cleanup.set_defaults(handler=cmd_cleanup_backups)

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.settings:
        settings.load_settings(args.settings)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)

    try:
        components = build_components(args)
        return args.handler(args, components)
    except AlreadyRunningError as error:
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_LOCKED
    except SnapshotError as error:
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_FAILURE
    except (OSError, ValueError) as error:
        if args.debug:
            logger.exception("Command failed")
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Cancelled", file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        logger.complete()


if __name__ == "__main__":
    sys.exit(main())
