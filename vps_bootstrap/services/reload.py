"""Post-restore reload signals.

After a restore overwrites tracked files, the subsystems that read them
(kernel parameters, firewall, remote desktop) are asked to reload. Reloading
is best effort: failures are logged and reported, never raised.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from vps_bootstrap.domain.models import ReloadResult
from vps_bootstrap.logging import LoggerFactory


log = LoggerFactory.for_system()

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess]


def validate_command_args(args: list[str]) -> None:
    """Validate command arguments before executing."""
    if not args or not all(isinstance(arg, str) and arg for arg in args):
        raise ValueError("Command args must be a non-empty list of strings.")


def run_command(args: list[str]) -> subprocess.CompletedProcess[str]:
    """Run a command and capture output."""
    validate_command_args(args)
    log.debug(f"Running command: {args!r}")
    result = subprocess.run(
        args,
        capture_output=True,
        text=True,
        check=False,
    )
    log.debug(f"Command return code: {result.returncode}")
    if result.stderr.strip():
        log.debug(f"Command stderr: {result.stderr.strip()!r}")
    return result


@dataclass(frozen=True)
class ReloadAction:
    """A reload command triggered by changes to some tracked files."""

    name: str
    command: tuple[str, ...]
    triggers: frozenset[str]
    requires_active_unit: Optional[str] = None  # Skip unless this unit is active

    def is_triggered_by(self, paths: Iterable[str]) -> bool:
        return any(path in self.triggers for path in paths)


def default_actions(dev_user: str) -> tuple[ReloadAction, ...]:
    """Reloads the provisioning tool performs after a restore."""
    return (
        ReloadAction(
            name="sysctl",
            command=("sysctl", "-p"),
            triggers=frozenset({"/etc/sysctl.conf"}),
        ),
        ReloadAction(
            name="ufw",
            command=("ufw", "reload"),
            triggers=frozenset({"/etc/ufw/user.rules"}),
            requires_active_unit="ufw",
        ),
        ReloadAction(
            name="xrdp",
            command=("systemctl", "restart", "xrdp"),
            triggers=frozenset({f"/home/{dev_user}/.xsession"}),
            requires_active_unit="xrdp",
        ),
    )


class ReloadNotifier:
    """Sends reload signals for restored files."""

    def __init__(
        self,
        actions: Iterable[ReloadAction],
        runner: CommandRunner = run_command,
    ):
        self.actions = tuple(actions)
        self.runner = runner

    def notify(self, paths: Iterable[str]) -> list[ReloadResult]:
        """Run every action triggered by ``paths`` once."""
        paths = list(paths)
        results: list[ReloadResult] = []
        for action in self.actions:
            if not action.is_triggered_by(paths):
                continue
            results.append(self._run(action))
        return results

    def _run(self, action: ReloadAction) -> ReloadResult:
        if shutil.which(action.command[0]) is None:
            log.warning(f"Cannot reload {action.name}: {action.command[0]} not found")
            return ReloadResult(action.name, ok=False, detail=f"{action.command[0]} not found")

        if action.requires_active_unit and not self._unit_active(action.requires_active_unit):
            log.debug(f"Skipping {action.name} reload: {action.requires_active_unit} inactive")
            return ReloadResult(action.name, ok=True, detail="inactive, skipped")

        try:
            result = self.runner(list(action.command))
        except OSError as error:
            log.warning(f"Reload of {action.name} failed: {error}")
            return ReloadResult(action.name, ok=False, detail=str(error))

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            log.warning(f"Reload of {action.name} exited with {result.returncode}: {detail}")
            return ReloadResult(action.name, ok=False, detail=detail or f"exit {result.returncode}")

        log.success(f"{action.name} reloaded")
        return ReloadResult(action.name, ok=True, detail="reloaded")

    def _unit_active(self, unit: str) -> bool:
        try:
            result = self.runner(["systemctl", "is-active", "--quiet", unit])
        except OSError:
            return False
        return result.returncode == 0
