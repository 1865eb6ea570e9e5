from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "VPS_BOOTSTRAP_LOG_DIR",
        Path.home() / ".local" / "state" / "vps-bootstrap" / "logs",
    )
)


def _should_log_lock_heartbeat(record) -> bool:
    """Hide routine lock acquire/release chatter unless tracing."""
    tags = record["extra"].get("tags", [])
    if record["level"].no >= logger.level("WARNING").no:
        return True
    if "lock" in tags and record["level"].no < logger.level("INFO").no:
        return record["level"].no <= logger.level("TRACE").no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Lock contention, aborted captures and restores
    - SUCCESS/INFO: Snapshots taken, files restored, snapshots pruned
    - DEBUG: Per-file copy details, reload commands
    - TRACE: Lock file reads and writes

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/vps-bootstrap/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_should_log_lock_heartbeat,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <15}</cyan> | "
            "<blue>{extra[job_id]: <18}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <15} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Ultra-verbose (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <18} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["snapshot", "restore"])
        source: Source component (e.g., "snapshot", "lock", "cli")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking multi-step operations with automatic timing.

    Logs operation start, completion and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "capture", "restore", "cleanup")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("restore", snapshot_id="20261018-142501") as log:
            log.debug("Capturing pre-restore snapshot")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_snapshot(job_id: str | None = None) -> Logger:
        """Logger for snapshot capture."""
        if job_id is None:
            job_id = f"snapshot-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="snapshot", tags=["snapshot", "backup"])

    @staticmethod
    def for_restore(job_id: str | None = None) -> Logger:
        """Logger for restore sessions."""
        if job_id is None:
            job_id = f"restore-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="restore", tags=["restore", "backup"])

    @staticmethod
    def for_retention() -> Logger:
        """Logger for snapshot pruning."""
        return logger.bind(source="retention", tags=["retention", "backup"])

    @staticmethod
    def for_lock() -> Logger:
        """Logger for the single-instance lock."""
        return logger.bind(source="lock", tags=["lock"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (service reloads, config)."""
        return logger.bind(source="system", tags=["system"])


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Provides methods for logging snapshot events with consistent structure
    and fields in structured.jsonl.
    """

    @staticmethod
    def log_snapshot_captured(
        log: Logger, snapshot_id: str, origin: str, file_count: int, size_bytes: int, **extra
    ) -> None:
        log.bind(
            event_type="snapshot_captured",
            snapshot_id=snapshot_id,
            origin=origin,
            file_count=file_count,
            size_bytes=size_bytes,
            **extra,
        ).info(f"Snapshot {snapshot_id} captured ({file_count} files)")

    @staticmethod
    def log_file_restored(log: Logger, path: str, outcome: str, **extra) -> None:
        # The message carries a raw path and must not go through str.format.
        log.bind(
            event_type="file_restored",
            path=path,
            outcome=outcome,
            **extra,
        ).info(f"{outcome.capitalize()}: {path}")

    @staticmethod
    def log_snapshot_deleted(
        log: Logger, snapshot_id: str, size_bytes: int, **extra
    ) -> None:
        log.bind(
            event_type="snapshot_deleted",
            snapshot_id=snapshot_id,
            size_bytes=size_bytes,
            **extra,
        ).info(f"Removed snapshot {snapshot_id}")
