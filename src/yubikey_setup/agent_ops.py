from __future__ import annotations

import time
from collections.abc import Callable

from .commands import CommandRunner
from .errors import HardwareError, ToolError
from .types import Result

# ssh-add lists keys held by an OpenPGP card with a "cardno:<serial>" comment.
TOKEN_IDENTITY_MARKER = "cardno:"

AGENT_SETTLE_SECONDS = 2.0


def has_token_identity(ssh_add_output: str, marker: str = TOKEN_IDENTITY_MARKER) -> bool:
    """Check `ssh-add -L` output for an identity served by the hardware token."""
    return marker in ssh_add_output


def first_identity(ssh_add_output: str) -> str | None:
    for line in ssh_add_output.splitlines():
        if line.strip():
            return line.strip()
    return None


class AgentOperations:
    def __init__(
        self,
        runner: CommandRunner,
        uid: int,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._sleep = sleep
        # Only the invoking user's agent; other sessions on the host are left alone.
        self._pgrep = ["pgrep", "-u", str(uid), "gpg-agent"]
        self._pkill = ["pkill", "-u", str(uid), "gpg-agent"]

    def is_running(self) -> bool:
        return self._runner.run_capture(self._pgrep).ok

    def restart(self, verify: bool = True) -> Result[bool]:
        """Kill any running gpg-agent, wait, verify and start a fresh one.

        The fixed sleep lets the OS reclaim the agent sockets before the
        termination check. Returns Ok(True) if the new agent started.
        """
        if self.is_running():
            kill = self._runner.run(self._pkill)
            if not kill.ok:
                return Result.err(ToolError("Failed to kill GPG agent", command=self._pkill))
            self._sleep(AGENT_SETTLE_SECONDS)

            if verify and self.is_running():
                return Result.err(
                    ToolError(
                        "GPG agent still running after kill attempt",
                        command=self._pkill,
                    )
                )

        start = self._runner.run(["gpg-agent", "--daemon"])
        return Result.ok(start.ok)

    def list_ssh_identities(self) -> Result[str]:
        result = self._runner.run_capture(["ssh-add", "-L"])
        if not result.ok:
            return Result.err(
                HardwareError("ssh-add -L failed: the SSH agent has no identities")
            )
        return Result.ok(result.stdout)

    def register_pinentry_alternative(self, pinentry_path: str) -> Result[bool]:
        """Select pinentry_path as the system pinentry via update-alternatives.

        Returns Ok(False) if update-alternatives is not available.
        """
        if not self._runner.which("update-alternatives"):
            return Result.ok(False)

        commands = [
            ["sudo", "update-alternatives", "--install", "/usr/bin/pinentry", "pinentry", pinentry_path, "1"],
            ["sudo", "update-alternatives", "--set", "pinentry", pinentry_path],
        ]
        for command in commands:
            result = self._runner.run(command)
            if not result.ok:
                return Result.err(
                    ToolError(f"Failed to set pinentry to {pinentry_path}", command=command)
                )
        return Result.ok(True)
