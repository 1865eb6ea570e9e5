"""Tracked-file registry.

The registry is the allow-list of absolute paths the snapshot subsystem may
capture or restore. Membership is configuration: the defaults below mirror
the files the provisioning steps edit, and settings or a registry file can
replace them without touching the engine.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable

from vps_bootstrap.config import settings
from vps_bootstrap.storage.exceptions import UntrackedPathError


_INLINE_COMMENT = re.compile(r"\s+#")

DEFAULT_TRACKED_FILES = (
    "/etc/fstab",
    "/etc/sysctl.conf",
    "/etc/ufw/user.rules",
    "/etc/sudoers.d/{dev_user}",
    "/home/{dev_user}/.xsession",
    "/etc/apt/sources.list.d/docker.list",
    "/etc/apt/sources.list.d/vscode.list",
    "/usr/share/applications/cursor.desktop",
    "/home/{dev_user}/.zshrc",
    "/home/{dev_user}/.bashrc",
)


def normalize_path(path: str | os.PathLike) -> str:
    """Normalize an absolute path without resolving symlinks."""
    value = os.fspath(path)
    if not os.path.isabs(value):
        raise ValueError(f"Tracked paths must be absolute: {value}")
    return os.path.normpath(value)


class TrackedFileRegistry:
    """Immutable set of absolute paths eligible for capture and restore."""

    def __init__(self, paths: Iterable[str | os.PathLike]):
        self._paths = frozenset(normalize_path(path) for path in paths)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        return self.contains(path)

    def __iter__(self):
        return iter(sorted(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def __repr__(self) -> str:
        return f"TrackedFileRegistry({sorted(self._paths)!r})"

    @property
    def paths(self) -> list[str]:
        return sorted(self._paths)

    def contains(self, path: str | os.PathLike) -> bool:
        try:
            return normalize_path(path) in self._paths
        except ValueError:
            return False

    def require(self, paths: Iterable[str | os.PathLike]) -> list[str]:
        """Return normalized paths, or raise if any is not tracked.

        Raises:
            UntrackedPathError: With every offending path, so nothing is
                captured or restored for a partially valid request.
        """
        accepted: list[str] = []
        rejected: list[str] = []
        for path in paths:
            if self.contains(path):
                normalized = normalize_path(path)
                if normalized not in accepted:
                    accepted.append(normalized)
            else:
                rejected.append(os.fspath(path))
        if rejected:
            raise UntrackedPathError(rejected)
        return accepted

    @classmethod
    def from_file(cls, path: Path) -> TrackedFileRegistry:
        """Load a registry file: one absolute path per line.

        A ``#`` starts a comment at the beginning of a line or after
        whitespace; elsewhere it is part of the path.
        """
        entries: list[str] = []
        for line in Path(path).read_text(encoding="utf-8").splitlines():
            line = _INLINE_COMMENT.split(line.strip(), maxsplit=1)[0].strip()
            if line and not line.startswith("#"):
                entries.append(line)
        return cls(entries)


def default_registry(dev_user: str | None = None) -> TrackedFileRegistry:
    dev_user = dev_user or settings.DEFAULT_DEV_USER
    return TrackedFileRegistry(
        entry.format(dev_user=dev_user) for entry in DEFAULT_TRACKED_FILES
    )


def load_registry(registry_path: Path | None = None) -> TrackedFileRegistry:
    """Build the registry from an explicit file, settings, or the defaults."""
    registry_path = registry_path or settings.get_path("registry_path")
    if registry_path is not None:
        return TrackedFileRegistry.from_file(registry_path)
    tracked_files = settings.get_setting("tracked_files")
    if tracked_files:
        return TrackedFileRegistry(tracked_files)
    return default_registry(settings.get_setting("dev_user"))
