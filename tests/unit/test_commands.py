from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

from yubikey_setup.commands import (
    COMMAND_NOT_FOUND,
    DRY_RUN_OUTPUT,
    CommandResult,
    DryRunRunner,
    SubprocessRunner,
)


class TestCommandResult:
    def test_ok_on_zero(self) -> None:
        assert CommandResult(("true",), 0).ok
        assert not CommandResult(("false",), 1).ok

    def test_command_line(self) -> None:
        assert CommandResult(("gpg", "--list-keys"), 0).command_line == "gpg --list-keys"


class TestSubprocessRunner:
    @patch("yubikey_setup.commands.subprocess.run")
    def test_run_capture_collects_output(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(["gpg"], 0, stdout="out", stderr="")

        result = SubprocessRunner().run_capture(["gpg", "--list-keys"])

        assert result.ok
        assert result.stdout == "out"
        mock_run.assert_called_once_with(
            ["gpg", "--list-keys"], capture_output=True, text=True, input=None
        )

    @patch("yubikey_setup.commands.subprocess.run")
    def test_run_inherits_terminal(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(["gpg2"], 0, stdout=None, stderr=None)

        result = SubprocessRunner().run(["gpg2", "--card-status"])

        assert result.ok
        assert result.stdout == ""
        assert mock_run.call_args.kwargs["capture_output"] is False

    @patch("yubikey_setup.commands.subprocess.run")
    def test_run_with_input_feeds_stdin(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(["gpg"], 0, stdout="", stderr="")

        SubprocessRunner().run_with_input(["gpg", "--edit-key", "0xABC"], "trust\n")

        assert mock_run.call_args.kwargs["input"] == "trust\n"

    @patch("yubikey_setup.commands.subprocess.run", side_effect=FileNotFoundError("no gpg2"))
    def test_missing_executable_is_127(self, _mock_run: MagicMock) -> None:
        result = SubprocessRunner().run_capture(["gpg2", "--card-status"])
        assert result.returncode == COMMAND_NOT_FOUND
        assert not result.ok

    @patch("yubikey_setup.commands.shutil.which")
    def test_which(self, mock_which: MagicMock) -> None:
        mock_which.side_effect = lambda name: "/usr/bin/git" if name == "git" else None
        runner = SubprocessRunner()
        assert runner.which("git")
        assert not runner.which("brew")


class TestDryRunRunner:
    def test_describes_instead_of_running(self) -> None:
        described: list[str] = []
        runner = DryRunRunner(described.append)

        with patch("yubikey_setup.commands.subprocess.run") as mock_run:
            result = runner.run(["sudo", "apt-get", "update"])

        mock_run.assert_not_called()
        assert result.ok
        assert result.stdout == DRY_RUN_OUTPUT
        assert described == ["DRY RUN: Would execute: sudo apt-get update"]

    def test_all_methods_succeed(self) -> None:
        runner = DryRunRunner(lambda _message: None)
        assert runner.run_capture(["pgrep", "gpg-agent"]).ok
        assert runner.run_with_input(["gpg2", "--decrypt"], "data").ok
        assert runner.which("brew")
        assert runner.described == [
            ("pgrep", "gpg-agent"),
            ("gpg2", "--decrypt"),
            ("which", "brew"),
        ]
