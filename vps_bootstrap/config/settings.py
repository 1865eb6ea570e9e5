"""Settings storage for snapshot and lock configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "VPS_BOOTSTRAP_SETTINGS_PATH",
        Path.home() / ".config" / "vps-bootstrap" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_BACKUP_ROOT = "/root/.vps-bootstrap-backups"
DEFAULT_LOCK_PATH = "/var/lock/vps-bootstrap.lock"
DEFAULT_MAX_SNAPSHOTS = 5
DEFAULT_DEV_USER = os.environ.get("DEV_USER", "developer")

DEFAULT_SETTINGS: dict[str, Any] = {
    "backup_root": DEFAULT_BACKUP_ROOT,
    "lock_path": DEFAULT_LOCK_PATH,
    "max_snapshots": DEFAULT_MAX_SNAPSHOTS,
    "dev_user": DEFAULT_DEV_USER,
    "tracked_files": None,
    "registry_path": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)
    path: Path = SETTINGS_PATH


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    if path is not None:
        settings_store.path = Path(path)
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not settings_store.path.exists():
        return
    try:
        data = json.loads(settings_store.path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    settings_store.path.parent.mkdir(parents=True, exist_ok=True)
    settings_store.path.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_path(key: str) -> Path | None:
    value = get_setting(key)
    if not value:
        return None
    return Path(value)


load_settings()
