"""
Pytest configuration and shared fixtures for vps-bootstrap tests.

Tracked files live under ``tmp_path`` so the tests never touch /etc; the
registry simply lists those absolute temporary paths.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict

import pytest
from loguru import logger

from vps_bootstrap.config.registry import TrackedFileRegistry
from vps_bootstrap.storage.catalog import SnapshotCatalog
from vps_bootstrap.storage.snapshot_store import SnapshotStore


class FakeClock:
    """Deterministic clock for snapshot ids."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def reset_logger():
    """Drop sinks added by setup_logging() so tests don't leak handlers."""
    yield
    logger.remove()


# ==============================================================================
# Tracked File Fixtures
# ==============================================================================


@pytest.fixture
def live_root(tmp_path) -> Path:
    root = tmp_path / "live"
    root.mkdir()
    return root


@pytest.fixture
def tracked_files(live_root) -> Dict[str, Path]:
    """
    Fixture providing three tracked configuration files.

    Returns:
        Mapping of short name to absolute path: fstab (0644),
        sysctl (0600) and sudoers (0440).
    """
    files = {
        "fstab": (live_root / "etc" / "fstab", "UUID=1234 / ext4 defaults 0 1\n", 0o644),
        "sysctl": (live_root / "etc" / "sysctl.conf", "vm.swappiness=10\n", 0o600),
        "sudoers": (
            live_root / "etc" / "sudoers.d" / "developer",
            "developer ALL=(ALL) NOPASSWD:ALL\n",
            0o440,
        ),
    }
    paths = {}
    for name, (path, content, mode) in files.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        path.chmod(mode)
        paths[name] = path
    return paths


@pytest.fixture
def registry(tracked_files) -> TrackedFileRegistry:
    return TrackedFileRegistry(str(path) for path in tracked_files.values())


@pytest.fixture
def registry_file(tmp_path, tracked_files) -> Path:
    path = tmp_path / "tracked-files.txt"
    lines = ["# Files the bootstrap edits"]
    lines.extend(str(p) for p in tracked_files.values())
    path.write_text("\n".join(lines) + "\n")
    return path


# ==============================================================================
# Snapshot Fixtures
# ==============================================================================


@pytest.fixture
def backup_root(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 18, 14, 25, 1))


@pytest.fixture
def store(backup_root, registry, clock) -> SnapshotStore:
    return SnapshotStore(backup_root, registry, clock=clock)


@pytest.fixture
def catalog(backup_root) -> SnapshotCatalog:
    return SnapshotCatalog(backup_root)


@pytest.fixture
def make_snapshots(store, clock):
    """Factory capturing ``count`` snapshots one second apart."""

    def _make(count: int, **kwargs):
        snapshots = []
        for _ in range(count):
            snapshots.append(store.capture(**kwargs))
            clock.advance(1)
        return snapshots

    return _make


# ==============================================================================
# Unusual Path Fixtures
# ==============================================================================


@pytest.fixture
def braced_files(live_root) -> Dict[str, Path]:
    """Tracked files whose names contain format-string braces."""
    paths = {
        "rules": live_root / "etc" / "udev" / "a{dev}.rules",
        "plain": live_root / "etc" / "z.conf",
    }
    for name, path in paths.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{name} original\n")
    return paths


@pytest.fixture
def braced_store(backup_root, braced_files, clock) -> SnapshotStore:
    registry = TrackedFileRegistry(str(path) for path in braced_files.values())
    return SnapshotStore(backup_root, registry, clock=clock)


@pytest.fixture
def log_messages():
    """Collect every message logged at TRACE and above."""
    messages = []
    logger.add(lambda message: messages.append(message.record["message"]), level="TRACE")
    return messages
