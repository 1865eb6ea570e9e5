"""Tests for storage/lock.py - single-instance lock."""

import os
import signal
import subprocess
import sys

import pytest

from vps_bootstrap.storage import lock as lock_module
from vps_bootstrap.storage.exceptions import AlreadyRunningError
from vps_bootstrap.storage.lock import LockCoordinator, read_holder_pid


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / "run" / "vps-bootstrap.lock"


@pytest.fixture
def coordinator(lock_path):
    return LockCoordinator(lock_path)


def _dead_pid():
    """Return the pid of a process that has already exited."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


class TestAcquireRelease:
    """Tests for acquire() and release()."""

    def test_acquire_writes_pid(self, coordinator, lock_path):
        handle = coordinator.acquire()

        assert lock_path.read_text().strip() == str(os.getpid())
        assert handle.holder_pid == os.getpid()
        assert not handle.forced
        assert handle.reclaimed_pid is None

    def test_release_removes_file(self, coordinator, lock_path):
        handle = coordinator.acquire()

        coordinator.release(handle)

        assert not lock_path.exists()

    def test_release_tolerates_missing_file(self, coordinator, lock_path):
        handle = coordinator.acquire()
        lock_path.unlink()

        coordinator.release(handle)

    def test_reacquire_after_release(self, coordinator):
        coordinator.release(coordinator.acquire())

        handle = coordinator.acquire()

        assert not handle.forced


class TestContention:
    """Tests for live and stale holders."""

    def test_live_holder_blocks(self, coordinator, lock_path):
        """Test a second acquire while a live process holds the lock fails."""
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text(f"{os.getpid()}\n")

        with pytest.raises(AlreadyRunningError) as exc_info:
            coordinator.acquire()

        assert exc_info.value.holder_pid == os.getpid()
        assert lock_path.read_text().strip() == str(os.getpid())

    def test_force_overrides_live_holder(self, coordinator, lock_path, mocker):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("4242\n")
        mocker.patch.object(lock_module.psutil, "pid_exists", return_value=True)

        handle = coordinator.acquire(force=True)

        assert handle.forced
        assert handle.reclaimed_pid == 4242
        assert lock_path.read_text().strip() == str(os.getpid())

    def test_stale_lock_reclaimed(self, coordinator, lock_path):
        """Test a lock left by an exited process is taken over."""
        stale_pid = _dead_pid()
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text(f"{stale_pid}\n")

        handle = coordinator.acquire()

        assert not handle.forced
        assert handle.reclaimed_pid == stale_pid
        assert read_holder_pid(lock_path) == os.getpid()

    def test_stale_lock_with_mocked_pid_check(self, coordinator, lock_path, mocker):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("99999\n")
        mocker.patch.object(lock_module.psutil, "pid_exists", return_value=False)

        handle = coordinator.acquire()

        assert handle.reclaimed_pid == 99999

    @pytest.mark.parametrize("content", ["", "garbage", "-5", "12ab"])
    def test_unreadable_lock_is_stale(self, coordinator, lock_path, content):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text(content)

        handle = coordinator.acquire()

        assert handle.reclaimed_pid is None
        assert read_holder_pid(lock_path) == os.getpid()

    def test_no_temporary_file_left(self, coordinator, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("garbage")

        coordinator.acquire()

        assert sorted(p.name for p in lock_path.parent.iterdir()) == [lock_path.name]

    def test_braced_lock_path_logged(self, tmp_path, log_messages, mocker):
        """Test a lock path containing braces is logged verbatim."""
        lock_path = tmp_path / "run{user}" / "vps-bootstrap.lock"
        lock_path.parent.mkdir()
        lock_path.write_text("4242\n")
        mocker.patch.object(lock_module.psutil, "pid_exists", return_value=True)
        coordinator = LockCoordinator(lock_path)

        with pytest.raises(AlreadyRunningError):
            coordinator.acquire()
        handle = coordinator.acquire(force=True)
        coordinator.release(handle)

        assert f"Lock {lock_path} is held by running process 4242" in log_messages
        assert f"Lock released at {lock_path}" in log_messages


class TestHold:
    """Tests for the hold() context manager."""

    def test_hold_releases_on_success(self, coordinator, lock_path):
        with coordinator.hold() as handle:
            assert lock_path.exists()
            assert handle.holder_pid == os.getpid()

        assert not lock_path.exists()

    def test_hold_releases_on_exception(self, coordinator, lock_path):
        with pytest.raises(RuntimeError):
            with coordinator.hold():
                raise RuntimeError("boom")

        assert not lock_path.exists()

    def test_hold_releases_on_sigterm(self, coordinator, lock_path):
        """Test SIGTERM while holding turns into SystemExit and releases."""
        with pytest.raises(SystemExit) as exc_info:
            with coordinator.hold():
                os.kill(os.getpid(), signal.SIGTERM)

        assert exc_info.value.code == 128 + signal.SIGTERM
        assert not lock_path.exists()

    def test_signal_handlers_restored(self, coordinator):
        before = signal.getsignal(signal.SIGTERM)

        with coordinator.hold():
            assert signal.getsignal(signal.SIGTERM) is lock_module._raise_system_exit

        assert signal.getsignal(signal.SIGTERM) == before

    def test_nested_hold_in_same_process_is_rejected(self, coordinator):
        """Test the lock is not re-entrant."""
        with coordinator.hold():
            with pytest.raises(AlreadyRunningError):
                coordinator.acquire()
