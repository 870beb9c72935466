from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pytest

from yubikey_setup.commands import CommandResult, CommandRunner
from yubikey_setup.context import ProvisioningContext
from yubikey_setup.gpg_ops import KNOWN_KEY_MARKER
from yubikey_setup.prompts import MockPrompts

TEST_KEY_ID = "0x1234567890ABCDEF"
TEST_USERNAME = "jdoe"
TEST_EMAIL = f"{TEST_USERNAME}@obmondo.com"
TEST_UID = 1000
PGREP_AGENT = ["pgrep", "-u", str(TEST_UID), "gpg-agent"]

LIST_KEYS_LONG = (
    "/home/jdoe/.gnupg/pubring.kbx\n"
    "-----------------------------\n"
    f"pub   rsa4096/{TEST_KEY_ID} 2023-01-01 [SC]\n"
    "      Key fingerprint = ABCD 1234\n"
    "uid                   [ unknown] John Doe <jdoe@obmondo.com>\n"
)
SSH_IDENTITIES = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQAB cardno:000612345678\n"
EXPORTED_KEY = "\n".join(
    ["-----BEGIN PGP PUBLIC KEY BLOCK-----", ""]
    + [f"line{i:02d}" for i in range(1, 14)]
    + ["-----END PGP PUBLIC KEY BLOCK-----"]
)


class FakeRunner(CommandRunner):
    """Records commands and answers them from scripted responses.

    Responses are keyed by command prefix; the longest matching prefix wins.
    Each key holds a queue of results, the last of which repeats forever.
    Unscripted commands succeed with empty output.
    """

    def __init__(self, missing: Iterable[str] = ()) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.inputs: list[tuple[tuple[str, ...], str]] = []
        self.which_calls: list[str] = []
        self.missing = set(missing)
        self._responses: dict[tuple[str, ...], list[tuple[int, str, str]]] = {}

    def script(
        self,
        prefix: Iterable[str],
        *results: tuple[int, str] | tuple[int, str, str],
    ) -> FakeRunner:
        queue = []
        for result in results:
            returncode, stdout, *rest = result
            queue.append((returncode, stdout, rest[0] if rest else ""))
        self._responses[tuple(prefix)] = queue
        return self

    def _respond(self, args: list[str]) -> CommandResult:
        command = tuple(args)
        self.calls.append(command)

        matches = [p for p in self._responses if command[: len(p)] == p]
        if not matches:
            return CommandResult(command, 0, "", "")

        queue = self._responses[max(matches, key=len)]
        returncode, stdout, stderr = queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(command, returncode, stdout, stderr)

    def run(self, args: list[str]) -> CommandResult:
        return self._respond(args)

    def run_capture(self, args: list[str]) -> CommandResult:
        return self._respond(args)

    def run_with_input(self, args: list[str], input_text: str) -> CommandResult:
        self.inputs.append((tuple(args), input_text))
        return self._respond(args)

    def which(self, name: str) -> bool:
        self.which_calls.append(name)
        return name not in self.missing

    def ran(self, *prefix: str) -> list[tuple[str, ...]]:
        """Commands run so far that start with prefix."""
        return [call for call in self.calls if call[: len(prefix)] == prefix]


def healthy_runner(installed: bool = False, imported: bool = False) -> FakeRunner:
    """A host where every tool behaves and the YubiKey is plugged in."""
    runner = FakeRunner()
    runner.script(["dpkg", "-l", "gnupg2"], (0 if installed else 1, ""))
    runner.script(["brew", "list", "gnupg"], (0 if installed else 1, ""))
    runner.script(["gpg", "--list-keys"], (0, f"pub   rsa4096/{KNOWN_KEY_MARKER}\n" if imported else ""))
    runner.script(PGREP_AGENT, (0, "4242\n"), (1, ""))
    runner.script(["ssh-add", "-L"], (0, SSH_IDENTITIES))
    runner.script(["gpg2", "--list-keys", "--keyid-format", "0xlong"], (0, LIST_KEYS_LONG))
    runner.script(["gpg2", "--encrypt"], (0, "-----BEGIN PGP MESSAGE-----\n...\n"))
    runner.script(["gpg2", "--decrypt"], (0, "yubikey-setup encryption round-trip test\n"))
    runner.script(["gpg", "--export", "-a"], (0, EXPORTED_KEY))
    return runner


def make_context(
    home: Path,
    system: str = "Linux",
    dry_run: bool = False,
    environ: dict[str, str] | None = None,
    key_file: bool = True,
) -> ProvisioningContext:
    key_path = home / "public.key"
    if key_file:
        key_path.write_text("-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    return ProvisioningContext(
        system=system,
        home=home,
        uid=TEST_UID,
        username=TEST_USERNAME,
        dry_run=dry_run,
        gpg_public_key_path=key_path,
        environ=environ if environ is not None else {},
    )


@pytest.fixture
def home(tmp_path: Path) -> Path:
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    return home_dir


@pytest.fixture
def linux_ctx(home: Path) -> ProvisioningContext:
    return make_context(home)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return healthy_runner()


@pytest.fixture
def mock_prompts() -> MockPrompts:
    return MockPrompts()


@pytest.fixture
def blank_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_runner():
    return healthy_runner


@pytest.fixture
def make_ctx(home: Path):
    def factory(**kwargs) -> ProvisioningContext:
        return make_context(home, **kwargs)

    return factory
