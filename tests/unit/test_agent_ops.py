from __future__ import annotations

from yubikey_setup.agent_ops import (
    AGENT_SETTLE_SECONDS,
    AgentOperations,
    first_identity,
    has_token_identity,
)
from yubikey_setup.errors import HardwareError, ToolError

UID = 1000
PGREP = ["pgrep", "-u", "1000", "gpg-agent"]
PKILL = ["pkill", "-u", "1000", "gpg-agent"]


class TestIdentityParsing:
    def test_token_identity(self) -> None:
        assert has_token_identity("ssh-rsa AAAA cardno:000612345678\n")
        assert not has_token_identity("ssh-ed25519 AAAA jdoe@laptop\n")

    def test_first_identity(self) -> None:
        assert first_identity("\nssh-rsa AAAA cardno:1\nssh-ed25519 BBBB x\n") == "ssh-rsa AAAA cardno:1"
        assert first_identity("") is None


class TestRestart:
    def test_kills_waits_and_starts(self, blank_runner) -> None:
        blank_runner.script(PGREP, (0, "4242"), (1, ""))
        sleeps: list[float] = []

        result = AgentOperations(blank_runner, UID, sleeps.append).restart()

        assert result.unwrap() is True
        assert sleeps == [AGENT_SETTLE_SECONDS]
        assert blank_runner.calls == [
            tuple(PGREP),
            tuple(PKILL),
            tuple(PGREP),
            ("gpg-agent", "--daemon"),
        ]

    def test_only_targets_own_agent(self, blank_runner) -> None:
        blank_runner.script(["pgrep", "-u", "1001", "gpg-agent"], (0, "4242"), (1, ""))

        AgentOperations(blank_runner, 1001, lambda _s: None).restart().unwrap()

        assert blank_runner.ran("pkill", "-u", "1001", "gpg-agent")
        assert not blank_runner.ran("pkill", "gpg-agent")
        assert not blank_runner.ran("pgrep", "gpg-agent")

    def test_not_running_just_starts(self, blank_runner) -> None:
        blank_runner.script(PGREP, (1, ""))
        sleeps: list[float] = []

        AgentOperations(blank_runner, UID, sleeps.append).restart()

        assert sleeps == []
        assert not blank_runner.ran("pkill")
        assert blank_runner.ran("gpg-agent", "--daemon")

    def test_agent_survives_kill(self, blank_runner) -> None:
        blank_runner.script(PGREP, (0, "4242"))

        error = AgentOperations(blank_runner, UID, lambda _s: None).restart().unwrap_err()

        assert isinstance(error, ToolError)
        assert str(error) == "GPG agent still running after kill attempt"
        assert not blank_runner.ran("gpg-agent", "--daemon")

    def test_kill_failure(self, blank_runner) -> None:
        blank_runner.script(PGREP, (0, "4242"))
        blank_runner.script(PKILL, (1, ""))

        error = AgentOperations(blank_runner, UID, lambda _s: None).restart().unwrap_err()

        assert str(error) == "Failed to kill GPG agent"

    def test_daemon_start_failure_is_reported(self, blank_runner) -> None:
        blank_runner.script(PGREP, (1, ""))
        blank_runner.script(["gpg-agent", "--daemon"], (2, ""))

        assert AgentOperations(blank_runner, UID).restart().unwrap() is False


class TestSSHIdentities:
    def test_lists_identities(self, blank_runner) -> None:
        blank_runner.script(["ssh-add", "-L"], (0, "ssh-rsa AAAA cardno:1\n"))
        assert AgentOperations(blank_runner, UID).list_ssh_identities().unwrap() == "ssh-rsa AAAA cardno:1\n"

    def test_no_agent(self, blank_runner) -> None:
        blank_runner.script(["ssh-add", "-L"], (2, "", "Could not open a connection"))
        error = AgentOperations(blank_runner, UID).list_ssh_identities().unwrap_err()
        assert isinstance(error, HardwareError)


class TestPinentryAlternative:
    def test_registers_and_selects(self, blank_runner) -> None:
        result = AgentOperations(blank_runner, UID).register_pinentry_alternative("/usr/bin/pinentry-gnome3")

        assert result.unwrap() is True
        assert blank_runner.calls == [
            ("sudo", "update-alternatives", "--install", "/usr/bin/pinentry", "pinentry",
             "/usr/bin/pinentry-gnome3", "1"),
            ("sudo", "update-alternatives", "--set", "pinentry", "/usr/bin/pinentry-gnome3"),
        ]

    def test_without_update_alternatives(self, blank_runner) -> None:
        blank_runner.missing.add("update-alternatives")
        assert AgentOperations(blank_runner, UID).register_pinentry_alternative("/x").unwrap() is False
        assert blank_runner.calls == []
