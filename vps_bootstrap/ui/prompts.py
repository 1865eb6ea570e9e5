"""Console prompts for the interactive restore."""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

from vps_bootstrap.domain.models import RestoreSession, RestoreState, SnapshotSummary, format_size

InputFunc = Callable[[str], str]
OutputFunc = Callable[[str], None]


def render_snapshot_list(
    summaries: Sequence[SnapshotSummary], output: OutputFunc = print
) -> None:
    """Print numbered catalog entries, newest first."""
    output("=== Available Backups ===")
    output("")
    if not summaries:
        output("No backups found")
        return
    for index, summary in enumerate(summaries, start=1):
        output(f"[{index}] Backup: {summary.id}")
        output(f"    Date: {summary.created_at:%Y-%m-%d %H:%M:%S}")
        output(f"    Origin: {summary.origin.value}")
        output(f"    Size: {format_size(summary.size_bytes)}")
        output(f"    Files: {summary.file_count}")
        output(f"    Path: {summary.directory}")
        output("")


def select_snapshot(
    summaries: Sequence[SnapshotSummary],
    input_func: InputFunc = input,
    output: OutputFunc = print,
) -> Optional[SnapshotSummary]:
    """Ask for a backup number. Returns None when the user quits.

    Invalid numbers re-prompt; end of input counts as quitting.
    """
    while True:
        try:
            choice = input_func("Enter backup number to restore (or 'q' to quit): ").strip()
        except EOFError:
            return None
        if choice.lower() in ("q", "quit", ""):
            return None
        if choice.isdigit() and 1 <= int(choice) <= len(summaries):
            return summaries[int(choice) - 1]
        output(f"Invalid backup number: {choice}")


def confirm(prompt: str, input_func: InputFunc = input) -> bool:
    """Require an explicit ``yes``."""
    try:
        answer = input_func(f"{prompt} (yes/no): ").strip().lower()
    except EOFError:
        return False
    return answer == "yes"


def render_file_list(paths: Iterable[str], output: OutputFunc = print) -> None:
    output("Files to restore:")
    for path in paths:
        output(f"  {path}")
    output("")


def render_restore_summary(session: RestoreSession, output: OutputFunc = print) -> None:
    """Print per-file results, counts and the safety snapshot id."""
    output("")
    output("=== Restore Summary ===")
    for path, result in session.per_file_results.items():
        mark = {"restored": "✓", "failed": "✗", "skipped": "-"}[result.outcome.value]
        line = f"  {mark} {result.outcome.value.capitalize()}: {path}"
        if result.detail:
            line += f" ({result.detail})"
        output(line)
    output(f"Restored: {len(session.restored)} files")
    if session.failed:
        output(f"Failed: {len(session.failed)} files")
    if session.skipped:
        output(f"Skipped: {len(session.skipped)} files")
    for notification in session.notifications:
        status = "ok" if notification.ok else "failed"
        output(f"Reload {notification.name}: {status} ({notification.detail})")
    if session.pre_restore_snapshot_id:
        output(f"Pre-restore backup saved as: {session.pre_restore_snapshot_id}")
    if session.state is RestoreState.ABORTED:
        output(f"Restore aborted: {session.error}")
    elif session.state is RestoreState.PARTIALLY_FAILED:
        output(
            "Restore partially failed. To undo, restore backup "
            f"{session.pre_restore_snapshot_id}"
        )
    else:
        output("Restore completed! Please review restored configurations before rebooting")
