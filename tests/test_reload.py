"""Tests for services/reload.py - post-restore reload signals."""

import subprocess

import pytest

from vps_bootstrap.services import reload
from vps_bootstrap.services.reload import (
    ReloadAction,
    ReloadNotifier,
    default_actions,
    run_command,
    validate_command_args,
)


class FakeRunner:
    """Records commands and returns canned exit codes."""

    def __init__(self, returncodes=None, error=None):
        self.calls = []
        self.returncodes = returncodes or {}
        self.error = error

    def __call__(self, args):
        self.calls.append(list(args))
        if self.error is not None and args[0] != "systemctl":
            raise self.error
        returncode = self.returncodes.get(tuple(args), 0)
        return subprocess.CompletedProcess(args, returncode, stdout="", stderr="bad config")


@pytest.fixture
def all_tools_present(mocker):
    return mocker.patch.object(reload.shutil, "which", return_value="/usr/bin/tool")


class TestDefaultActions:
    def test_triggers_follow_dev_user(self):
        actions = {action.name: action for action in default_actions("alice")}

        assert actions["sysctl"].is_triggered_by(["/etc/sysctl.conf"])
        assert actions["ufw"].is_triggered_by(["/etc/ufw/user.rules"])
        assert actions["xrdp"].is_triggered_by(["/home/alice/.xsession"])
        assert not actions["xrdp"].is_triggered_by(["/home/bob/.xsession"])


class TestReloadNotifier:
    """Tests for ReloadNotifier.notify()."""

    def test_only_triggered_actions_run(self, all_tools_present):
        runner = FakeRunner()
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        results = notifier.notify(["/etc/sysctl.conf", "/etc/fstab"])

        assert [r.name for r in results] == ["sysctl"]
        assert results[0].ok
        assert runner.calls == [["sysctl", "-p"]]

    def test_untriggered_paths_do_nothing(self, all_tools_present):
        runner = FakeRunner()
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        assert notifier.notify(["/etc/fstab"]) == []
        assert runner.calls == []

    def test_inactive_unit_skipped(self, all_tools_present):
        runner = FakeRunner({("systemctl", "is-active", "--quiet", "ufw"): 3})
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        (result,) = notifier.notify(["/etc/ufw/user.rules"])

        assert result.ok
        assert "inactive" in result.detail
        assert ["ufw", "reload"] not in runner.calls

    def test_active_unit_reloaded(self, all_tools_present):
        runner = FakeRunner()
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        notifier.notify(["/home/developer/.xsession"])

        assert runner.calls[-1] == ["systemctl", "restart", "xrdp"]

    def test_missing_tool_reported(self, mocker):
        mocker.patch.object(reload.shutil, "which", return_value=None)
        notifier = ReloadNotifier(default_actions("developer"), runner=FakeRunner())

        (result,) = notifier.notify(["/etc/sysctl.conf"])

        assert not result.ok
        assert "not found" in result.detail

    def test_nonzero_exit_reported(self, all_tools_present):
        runner = FakeRunner({("sysctl", "-p"): 255})
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        (result,) = notifier.notify(["/etc/sysctl.conf"])

        assert not result.ok
        assert result.detail == "bad config"

    def test_runner_oserror_reported(self, all_tools_present):
        runner = FakeRunner(error=PermissionError(13, "Permission denied"))
        notifier = ReloadNotifier(default_actions("developer"), runner=runner)

        (result,) = notifier.notify(["/etc/sysctl.conf"])

        assert not result.ok
        assert "Permission denied" in result.detail

    def test_each_action_runs_once(self, all_tools_present):
        runner = FakeRunner()
        action = ReloadAction(
            name="sysctl",
            command=("sysctl", "-p"),
            triggers=frozenset({"/etc/sysctl.conf", "/etc/sysctl.d/99-dev.conf"}),
        )
        notifier = ReloadNotifier([action], runner=runner)

        notifier.notify(["/etc/sysctl.conf", "/etc/sysctl.d/99-dev.conf"])

        assert runner.calls == [["sysctl", "-p"]]


class TestRunCommand:
    def test_validate_rejects_empty(self):
        with pytest.raises(ValueError):
            validate_command_args([])

    def test_validate_rejects_non_strings(self):
        with pytest.raises(ValueError):
            validate_command_args(["ls", None])

    def test_run_command_uses_subprocess(self, mocker):
        completed = subprocess.CompletedProcess(["true"], 0, stdout="", stderr="")
        mock_run = mocker.patch.object(reload.subprocess, "run", return_value=completed)

        result = run_command(["true"])

        assert result is completed
        mock_run.assert_called_once_with(["true"], capture_output=True, text=True, check=False)


class TestReloadLogging:
    def test_braces_in_output_logged_verbatim(self, all_tools_present, log_messages, mocker):
        completed = subprocess.CompletedProcess(
            ["sysctl", "-p"], 255, stdout="", stderr="unknown key {net.x}"
        )
        mocker.patch.object(reload.subprocess, "run", return_value=completed)
        notifier = ReloadNotifier(default_actions("developer"))

        (result,) = notifier.notify(["/etc/sysctl.conf"])

        assert result.detail == "unknown key {net.x}"
        assert "Reload of sysctl exited with 255: unknown key {net.x}" in log_messages
        assert "Command stderr: 'unknown key {net.x}'" in log_messages
        assert not any("{{" in message for message in log_messages)
