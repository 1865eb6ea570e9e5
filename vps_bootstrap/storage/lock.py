"""Single-instance lock shared by provisioning, capture and restore.

The lock is a plain file holding the holder's process id. It is advisory:
every entry point acquires it through ``LockCoordinator.hold()`` so that only
one provisioning or restore process mutates tracked files at a time.

Usage:
    from vps_bootstrap.storage.lock import LockCoordinator

    with LockCoordinator("/var/lock/vps-bootstrap.lock").hold(force=False) as handle:
        # Capture, restore or prune snapshots
        ...
"""

from __future__ import annotations

import os
import signal
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator

import psutil

from vps_bootstrap.domain.models import LockHandle
from vps_bootstrap.logging import LoggerFactory
from vps_bootstrap.storage.exceptions import AlreadyRunningError


log = LoggerFactory.for_lock()

_RELEASE_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def read_holder_pid(path: Path) -> int | None:
    """Read the pid stored in a lock file, or None if unreadable."""
    try:
        content = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as error:
        log.warning(f"Could not read lock file {path}: {error}")
        return None
    try:
        pid = int(content)
    except ValueError:
        log.trace(f"Lock file {path} holds no pid: {content!r}")
        return None
    return pid if pid > 0 else None


def is_process_alive(pid: int) -> bool:
    try:
        return psutil.pid_exists(pid)
    except (psutil.Error, OverflowError, ValueError):
        return False


def _raise_system_exit(signum, frame) -> None:
    raise SystemExit(128 + signum)


class LockCoordinator:
    """Acquire and release the lock file at ``path``."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def acquire(self, force: bool = False) -> LockHandle:
        """Take the lock for the current process.

        A lock held by a live process fails unless ``force`` is set. Locks
        left by dead processes, or with unreadable content, are stale and
        are reclaimed.

        Raises:
            AlreadyRunningError: Live holder and no force override
        """
        pid = os.getpid()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._create_exclusive(pid):
            log.bind(pid=pid).trace(f"Lock acquired at {self.path}")
            return LockHandle(path=self.path, holder_pid=pid, acquired_at=datetime.now())

        holder_pid = read_holder_pid(self.path)
        holder_alive = holder_pid is not None and is_process_alive(holder_pid)
        if holder_alive:
            if not force:
                log.bind(holder_pid=holder_pid).error(
                    f"Lock {self.path} is held by running process {holder_pid}"
                )
                raise AlreadyRunningError(holder_pid, self.path)
            log.bind(holder_pid=holder_pid).warning(
                f"Forcing lock {self.path} away from running process {holder_pid}"
            )
        else:
            log.bind(holder_pid=holder_pid).warning(
                f"Reclaiming stale lock {self.path} (previous holder: {holder_pid or 'unknown'})"
            )

        self._overwrite(pid)
        return LockHandle(
            path=self.path,
            holder_pid=pid,
            acquired_at=datetime.now(),
            forced=holder_alive,
            reclaimed_pid=holder_pid,
        )

    def release(self, handle: LockHandle) -> None:
        """Delete the lock file. Missing files are ignored."""
        try:
            handle.path.unlink()
            log.bind(pid=handle.holder_pid).trace(f"Lock released at {handle.path}")
        except FileNotFoundError:
            log.debug(f"Lock file {handle.path} already removed")
        except OSError as error:
            log.warning(f"Failed to remove lock file {handle.path}: {error}")

    @contextmanager
    def hold(self, force: bool = False) -> Generator[LockHandle, None, None]:
        """Hold the lock for the duration of the block.

        SIGTERM and SIGHUP are turned into ``SystemExit`` while the lock is
        held so the release in ``finally`` runs on those exit paths too.
        """
        handle = self.acquire(force=force)
        previous_handlers = _install_signal_handlers()
        try:
            yield handle
        finally:
            self.release(handle)
            _restore_signal_handlers(previous_handlers)

    def _create_exclusive(self, pid: int) -> bool:
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as lock_file:
            lock_file.write(f"{pid}\n")
        return True

    def _overwrite(self, pid: int) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.{pid}.tmp")
        tmp_path.write_text(f"{pid}\n", encoding="utf-8")
        os.replace(tmp_path, self.path)


def _install_signal_handlers() -> dict[int, object]:
    if threading.current_thread() is not threading.main_thread():
        return {}
    previous: dict[int, object] = {}
    for signum in _RELEASE_SIGNALS:
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _raise_system_exit)
    return previous


def _restore_signal_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        if handler is None:
            handler = signal.SIG_DFL
        signal.signal(signum, handler)
