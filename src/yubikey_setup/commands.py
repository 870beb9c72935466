"""External command execution.

Every host tool the provisioning pipeline touches (package managers, gpg,
gpg-agent, ssh-add, git) goes through a CommandRunner. The real runner shells
out with subprocess; DryRunRunner describes commands instead of running them;
tests substitute a fake that records calls.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DRY_RUN_OUTPUT = "dry-run-output"
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)


class CommandRunner(ABC):
    """Blocking command execution. No timeouts: a hung tool blocks the run."""

    @abstractmethod
    def run(self, args: list[str]) -> CommandResult:
        """Run a command attached to the terminal."""

    @abstractmethod
    def run_capture(self, args: list[str]) -> CommandResult:
        """Run a command and capture its output."""

    @abstractmethod
    def run_with_input(self, args: list[str], input_text: str) -> CommandResult:
        """Run a command feeding input_text on stdin, capturing output."""

    @abstractmethod
    def which(self, name: str) -> bool:
        """Return True if an executable is available on PATH."""


class SubprocessRunner(CommandRunner):
    def _execute(
        self,
        args: list[str],
        capture: bool,
        input_text: str | None = None,
    ) -> CommandResult:
        logger.debug("Executing: %s", " ".join(args))
        try:
            completed = subprocess.run(
                args,
                capture_output=capture,
                text=True,
                input=input_text,
            )
        except FileNotFoundError as e:
            logger.debug("Executable not found: %s", args[0])
            return CommandResult(tuple(args), COMMAND_NOT_FOUND, "", str(e))

        logger.debug("Exit status %d: %s", completed.returncode, " ".join(args))
        return CommandResult(
            tuple(args),
            completed.returncode,
            completed.stdout or "",
            completed.stderr or "",
        )

    def run(self, args: list[str]) -> CommandResult:
        return self._execute(args, capture=False)

    def run_capture(self, args: list[str]) -> CommandResult:
        return self._execute(args, capture=True)

    def run_with_input(self, args: list[str], input_text: str) -> CommandResult:
        return self._execute(args, capture=True, input_text=input_text)

    def which(self, name: str) -> bool:
        return shutil.which(name) is not None


class DryRunRunner(CommandRunner):
    """Describes every command instead of executing it.

    All commands report success with synthetic output so that checks which
    only gate later steps short-circuit and the whole pipeline can be walked.
    """

    def __init__(self, describe: Callable[[str], None] | None = None) -> None:
        self._describe = describe or (lambda message: logger.info(message))
        self.described: list[tuple[str, ...]] = []

    def _pretend(self, args: list[str]) -> CommandResult:
        self.described.append(tuple(args))
        self._describe(f"DRY RUN: Would execute: {' '.join(args)}")
        return CommandResult(tuple(args), 0, DRY_RUN_OUTPUT, "")

    def run(self, args: list[str]) -> CommandResult:
        return self._pretend(args)

    def run_capture(self, args: list[str]) -> CommandResult:
        return self._pretend(args)

    def run_with_input(self, args: list[str], input_text: str) -> CommandResult:
        return self._pretend(args)

    def which(self, name: str) -> bool:
        self._pretend(["which", name])
        return True
