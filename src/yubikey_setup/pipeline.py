"""The YubiKey provisioning pipeline.

A fixed, ordered list of steps configures GPG, the GPG agent, SSH and Git
for a hardware token. Steps run strictly in sequence against one
ProvisioningContext. Any fatal condition stops the run immediately and is
raised stamped with the run's tracking id; in dry-run mode fatal conditions
are reported as warnings instead so that every step can be walked through
without touching the host.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .agent_ops import AgentOperations, first_identity, has_token_identity
from .commands import CommandRunner, DryRunRunner, SubprocessRunner
from .config import (
    append_shell_profile_line,
    ensure_gnupg_dir,
    render_gpg_agent_conf,
    write_dirmngr_conf,
    write_gpg_agent_conf,
    write_gpg_conf,
)
from .context import ProvisioningContext, expand_key_path, resolve_platform
from .errors import (
    PASS_STORE_URL,
    EnvironmentError,
    HardwareError,
    PreconditionError,
    StateError,
    ToolError,
    YubiKeySetupError,
)
from .fallback import candidate_identifiers, try_candidates
from .gpg_ops import DRY_RUN_KEY_ID, KNOWN_KEY_MARKER, GPGOperations
from .packages import PrerequisiteInstaller
from .prompts import Prompts
from .types import OperatingSystem, Result, StepStatus

logger = logging.getLogger(__name__)

EXPORT_PREVIEW_LINES = 10


def controlling_tty() -> str:
    """Terminal device for GPG_TTY, needed by curses/tty pinentry backends."""
    try:
        return os.ttyname(sys.stdin.fileno())
    except (OSError, ValueError, AttributeError):
        return "/dev/tty"


@dataclass(frozen=True)
class Step:
    number: int
    name: str
    description: str
    handler: Callable[[], StepStatus]
    mutating: bool = False


@dataclass
class StepRecord:
    number: int
    name: str
    status: StepStatus
    started_at: datetime
    finished_at: datetime
    mutating: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "mutating": self.mutating,
        }


@dataclass
class PipelineOutcome:
    tracking_id: str
    dry_run: bool
    total_steps: int
    records: list[StepRecord] = field(default_factory=list)
    suppressed_errors: list[YubiKeySetupError] = field(default_factory=list)

    @property
    def completed_all_steps(self) -> bool:
        return len(self.records) == self.total_steps

    @property
    def success(self) -> bool:
        return self.completed_all_steps and not self.suppressed_errors

    def status_of(self, name: str) -> StepStatus | None:
        for record in self.records:
            if record.name == name:
                return record.status
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "dry_run": self.dry_run,
            "success": self.success,
            "steps": [record.to_dict() for record in self.records],
            "suppressed_errors": [
                {"category": e.category.name, "message": e.message}
                for e in self.suppressed_errors
            ],
        }


class ProvisioningPipeline:
    def __init__(
        self,
        ctx: ProvisioningContext,
        runner: CommandRunner | None = None,
        prompts: Prompts | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ctx = ctx
        self._prompts = prompts or Prompts()

        base_runner = runner or SubprocessRunner()
        if ctx.dry_run:
            self._runner: CommandRunner = DryRunRunner(self._prompts.show_info)
            self._sleep: Callable[[float], None] = lambda _seconds: None
        else:
            self._runner = base_runner
            self._sleep = sleep

        self._gpg = GPGOperations(self._runner)
        self._agent = AgentOperations(self._runner, ctx.uid, self._sleep)
        self._steps = self._build_steps()
        self._outcome = PipelineOutcome(
            tracking_id=ctx.tracking_id,
            dry_run=ctx.dry_run,
            total_steps=len(self._steps),
        )

    @property
    def context(self) -> ProvisioningContext:
        return self._ctx

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def outcome(self) -> PipelineOutcome:
        return self._outcome

    def _build_steps(self) -> list[Step]:
        definitions: list[tuple[str, str, Callable[[], StepStatus], bool]] = [
            ("check_os_compatibility", "Check operating system compatibility", self.check_os_compatibility, False),
            ("confirm_pin", "Confirm YubiKey PIN", self.confirm_pin, False),
            ("resolve_key_path", "Locate GPG public key", self.resolve_key_path, False),
            ("install_prerequisites", "Install prerequisites", self.install_prerequisites, True),
            ("write_gpg_configs", "Write GPG configuration", self.write_gpg_configs, True),
            ("write_agent_config", "Write GPG agent configuration", self.write_agent_config, True),
            ("configure_shell_profile", "Configure shell environment", self.configure_shell_profile, True),
            ("clear_ssh_auth_sock", "Clear existing SSH_AUTH_SOCK", self.clear_ssh_auth_sock, True),
            ("import_public_key", "Import GPG public key", self.import_public_key, True),
            ("restart_agent", "Restart GPG agent", self.restart_agent, True),
            ("detect_token", "Detect YubiKey", self.detect_token, True),
            ("check_ssh_identity", "Check SSH support", self.check_ssh_identity, False),
            ("discover_key_id", "Discover PGP key id", self.discover_key_id, False),
            ("set_ultimate_trust", "Set key trust to ultimate", self.set_ultimate_trust, True),
            ("test_encryption", "Test encryption and decryption", self.test_encryption, True),
            ("configure_git_signing", "Configure Git signing", self.configure_git_signing, True),
            ("show_final_instructions", "Show next steps", self.show_final_instructions, False),
        ]
        return [
            Step(number=i, name=name, description=description, handler=handler, mutating=mutating)
            for i, (name, description, handler, mutating) in enumerate(definitions, 1)
        ]

    def run(self) -> PipelineOutcome:
        """Execute every step in order.

        Raises the first fatal YubiKeySetupError (stamped with the tracking
        id) unless the run is a dry run.
        """
        if self._ctx.dry_run:
            self._prompts.show_warning("DRY RUN MODE - No changes will be made")

        total = len(self._steps)
        for step in self._steps:
            self._prompts.show_step(step.number, total, step.description)
            logger.debug("Running step %d/%d: %s", step.number, total, step.name)
            started_at = datetime.now(UTC)

            try:
                status = step.handler()
            except YubiKeySetupError as e:
                e.tracking_id = self._ctx.tracking_id
                self._record(step, StepStatus.FAILED, started_at)
                raise

            self._record(step, status, started_at)

        return self._outcome

    def _record(self, step: Step, status: StepStatus, started_at: datetime) -> None:
        self._outcome.records.append(
            StepRecord(
                number=step.number,
                name=step.name,
                status=status,
                started_at=started_at,
                finished_at=datetime.now(UTC),
                mutating=step.mutating,
            )
        )

    def _fatal(self, error: Exception, enforce: bool = False) -> StepStatus:
        """Stop the run, or in dry-run mode report the failure and continue."""
        if not isinstance(error, YubiKeySetupError):
            error = ToolError(str(error), cause=error)
        error.tracking_id = self._ctx.tracking_id

        if self._ctx.dry_run and not enforce:
            logger.warning("Suppressed in dry run: %s", error.message)
            self._outcome.suppressed_errors.append(error)
            self._prompts.show_warning(
                f"[ERROR-{self._ctx.tracking_id}] {error.message} (dry run, continuing)"
            )
            return StepStatus.FAILED

        raise error

    def _require_key_path(self) -> Path:
        if self._ctx.gpg_public_key_path is None:
            raise StateError("GPG public key path has not been resolved")
        return self._ctx.gpg_public_key_path

    # Steps

    def check_os_compatibility(self) -> StepStatus:
        self._prompts.show_info("Checking operating system compatibility...")
        result = resolve_platform(self._ctx.system, self._ctx.home, self._ctx.uid)
        if result.is_err():
            # Nothing after this step can be described without a platform.
            return self._fatal(result.unwrap_err(), enforce=True)

        self._ctx.platform = result.unwrap()
        self._prompts.show_success(
            f"{self._ctx.operating_system.display_name} detected - supported"
        )
        return StepStatus.COMPLETED

    def confirm_pin(self) -> StepStatus:
        if self._ctx.skip_pin_check:
            self._prompts.show_warning("Skipping PIN check (not recommended)")
            return StepStatus.SKIPPED

        if not self._prompts.confirm_pin_possession():
            self._prompts.show_pin_help()
            return self._fatal(PreconditionError("You need your YubiKey PIN to proceed."))

        return StepStatus.COMPLETED

    def resolve_key_path(self) -> StepStatus:
        if self._ctx.gpg_public_key_path is not None:
            self._prompts.show_info(f"Using provided GPG key path: {self._ctx.gpg_public_key_path}")
            raw: str | Path = self._ctx.gpg_public_key_path
        else:
            raw = self._prompts.get_key_path()

        key_path = expand_key_path(raw, self._ctx.home)
        self._ctx.gpg_public_key_path = key_path

        if not key_path.is_file() or not os.access(key_path, os.R_OK):
            return self._fatal(
                PreconditionError(
                    f"GPG public key file not found at '{key_path}'. "
                    f"Please get it from {PASS_STORE_URL} and try again."
                )
            )

        self._prompts.show_success(f"GPG public key found at: {key_path}")
        return StepStatus.COMPLETED

    def install_prerequisites(self) -> StepStatus:
        self._prompts.show_info("Installing prerequisites...")
        profile = self._ctx.require_platform()
        installer = PrerequisiteInstaller(self._runner, profile.operating_system)

        result = installer.install()
        if result.is_err():
            return self._fatal(result.unwrap_err())

        if not result.unwrap():
            self._prompts.show_info("Prerequisites already installed, skipping")
            return StepStatus.SKIPPED

        self._prompts.show_success("Prerequisites installed")
        return StepStatus.COMPLETED

    def write_gpg_configs(self) -> StepStatus:
        self._prompts.show_info("Configuring GPG...")
        gnupghome = self._ctx.gnupg_dir

        if self._ctx.dry_run:
            if not gnupghome.is_dir():
                self._prompts.show_info(f"DRY RUN: Would create directory: {gnupghome}")
            self._prompts.show_info(f"DRY RUN: Would write GPG config to: {gnupghome / 'gpg.conf'}")
            self._prompts.show_info(
                f"DRY RUN: Would write dirmngr config to: {gnupghome / 'dirmngr.conf'}"
            )
            return StepStatus.COMPLETED

        for write in (ensure_gnupg_dir, write_gpg_conf, write_dirmngr_conf):
            result = write(gnupghome)
            if result.is_err():
                return self._fatal(result.unwrap_err())

        self._prompts.show_success(f"GPG configuration written to {gnupghome}")
        return StepStatus.COMPLETED

    def write_agent_config(self) -> StepStatus:
        self._prompts.show_info("Configuring GPG agent...")
        profile = self._ctx.require_platform()
        conf_path = self._ctx.gnupg_dir / "gpg-agent.conf"

        if (
            profile.operating_system == OperatingSystem.MACOS
            and not self._ctx.dry_run
            and not Path(profile.pinentry_program_path).exists()
        ):
            return self._fatal(
                EnvironmentError(
                    f"pinentry-mac not found at {profile.pinentry_program_path}. "
                    "Please ensure it's installed correctly.",
                    missing_tool="pinentry-mac",
                )
            )

        content = render_gpg_agent_conf(profile, self._ctx.uid)

        if self._ctx.dry_run:
            self._prompts.show_info(f"DRY RUN: Would write GPG agent config to: {conf_path}")
            return StepStatus.COMPLETED

        result = write_gpg_agent_conf(self._ctx.gnupg_dir, content)
        if result.is_err():
            return self._fatal(result.unwrap_err())

        self._prompts.show_success(f"GPG agent configuration written to {conf_path}")
        return StepStatus.COMPLETED

    def configure_shell_profile(self) -> StepStatus:
        self._prompts.show_info("Configuring shell environment...")
        profile = self._ctx.require_platform()

        if self._ctx.dry_run:
            self._prompts.show_info(
                f"DRY RUN: Would add to {profile.shell_profile_path}: {profile.shell_profile_line}"
            )
            return StepStatus.COMPLETED

        result = append_shell_profile_line(profile)
        if result.is_err():
            return self._fatal(result.unwrap_err())

        if not result.unwrap():
            self._prompts.show_info(
                f"{profile.shell_profile_path} already sets SSH_AUTH_SOCK, skipping"
            )
            return StepStatus.SKIPPED

        self._prompts.show_success(f"Added SSH_AUTH_SOCK to {profile.shell_profile_path}")
        return StepStatus.COMPLETED

    def clear_ssh_auth_sock(self) -> StepStatus:
        self._prompts.show_info("Checking for existing SSH_AUTH_SOCK...")
        if "SSH_AUTH_SOCK" not in self._ctx.environ:
            return StepStatus.SKIPPED

        self._prompts.show_warning("Found existing SSH_AUTH_SOCK, unsetting it...")
        if self._ctx.dry_run:
            self._prompts.show_info("DRY RUN: Would unset SSH_AUTH_SOCK")
        else:
            del self._ctx.environ["SSH_AUTH_SOCK"]
        return StepStatus.COMPLETED

    def import_public_key(self) -> StepStatus:
        self._prompts.show_info("Importing GPG public key...")
        key_path = self._require_key_path()

        if self._gpg.key_already_imported():
            self._prompts.show_warning(f"Key {KNOWN_KEY_MARKER} already exists, skipping import")
            return StepStatus.SKIPPED

        result = self._gpg.import_key(key_path)
        if result.is_err():
            return self._fatal(result.unwrap_err())

        if not result.unwrap():
            self._prompts.show_warning("Key already imported (key not changed)")
            return StepStatus.SKIPPED

        self._prompts.show_success(f"Imported GPG public key from {key_path}")
        return StepStatus.COMPLETED

    def restart_agent(self) -> StepStatus:
        self._prompts.show_info("Restarting GPG agent...")
        result = self._agent.restart(verify=not self._ctx.dry_run)
        if result.is_err():
            return self._fatal(result.unwrap_err())

        if not result.unwrap():
            self._prompts.show_warning("gpg-agent --daemon did not start; gpg will launch it on demand")
        return StepStatus.COMPLETED

    def detect_token(self) -> StepStatus:
        self._prompts.show_info("Checking YubiKey detection...")
        profile = self._ctx.require_platform()

        if not self._ctx.dry_run:
            self._prompts.wait_for_yubikey()

        status = self._gpg.card_status()
        if status.is_err():
            return self._fatal(
                HardwareError(
                    "YubiKey not detected. Please replug your YubiKey and try again.",
                    cause=status.unwrap_err(),
                )
            )
        self._prompts.show_success("YubiKey detected")

        if profile.operating_system == OperatingSystem.LINUX:
            self._prompts.show_info(f"Setting pinentry to {profile.pinentry_program_path}...")
            alternative = self._agent.register_pinentry_alternative(profile.pinentry_program_path)
            if alternative.is_err():
                self._prompts.show_warning(str(alternative.unwrap_err()))
            elif not alternative.unwrap():
                self._prompts.show_warning("update-alternatives not found, pinentry left unchanged")

        return StepStatus.COMPLETED

    def check_ssh_identity(self) -> StepStatus:
        self._prompts.show_info("Checking SSH support...")
        result = self._agent.list_ssh_identities()

        token_missing = result.is_err() or (
            not self._ctx.dry_run and not has_token_identity(result.unwrap())
        )
        if token_missing:
            return self._fatal(
                HardwareError(
                    "YubiKey card number not found in ssh-add -L output. "
                    "Please replug YubiKey and restart the script."
                )
            )

        self._prompts.show_success("YubiKey SSH identity found")
        return StepStatus.COMPLETED

    def discover_key_id(self) -> StepStatus:
        self._prompts.show_info("Getting PGP Key ID...")
        result = self._gpg.discover_key_id()
        if self._ctx.dry_run:
            result = Result.ok(DRY_RUN_KEY_ID)

        if result.is_err():
            return self._fatal(result.unwrap_err())

        self._ctx.pgp_key_id = result.unwrap()
        self._prompts.show_success(f"PGP Key ID: {self._ctx.pgp_key_id}")
        return StepStatus.COMPLETED

    def set_ultimate_trust(self) -> StepStatus:
        key_id = self._ctx.require_key_id()
        self._prompts.show_info("Setting key trust to ultimate...")
        self._prompts.show_info(f"Setting trust level to 5 (ultimate) for key {key_id}")

        if self._ctx.dry_run:
            self._prompts.show_info("DRY RUN: Would set key trust to ultimate")
            return StepStatus.COMPLETED

        result = try_candidates(
            candidate_identifiers(key_id, self._ctx.email_identity),
            self._gpg.set_ultimate_trust,
            on_retry=lambda _failed, identifier: self._prompts.show_warning(
                f"Trying with email: {identifier}"
            ),
            failure_message="Failed to set key trust",
        )
        if result.is_err():
            return self._fatal(result.unwrap_err())

        self._prompts.show_success("Key trust set to ultimate")
        return StepStatus.COMPLETED

    def test_encryption(self) -> StepStatus:
        key_id = self._ctx.require_key_id()
        self._prompts.show_info("Testing encryption and decryption...")

        if self._ctx.dry_run:
            self._prompts.show_info("DRY RUN: Would test encryption/decryption")
            self._prompts.show_success("Encryption/decryption test passed!")
            return StepStatus.COMPLETED

        self._prompts.show_info(
            "Please enter your PIN when prompted and touch your YubiKey when it blinks..."
        )
        self._ctx.environ["GPG_TTY"] = controlling_tty()

        result = try_candidates(
            candidate_identifiers(key_id, self._ctx.email_identity),
            self._gpg.encryption_round_trip,
            on_retry=lambda _failed, identifier: self._prompts.show_warning(
                f"Trying encryption test with email: {identifier}"
            ),
            failure_message=(
                "Encryption/decryption test failed. "
                "Make sure pinentry-gnome3 is set and GPG_TTY is exported."
            ),
        )
        if result.is_err():
            return self._fatal(result.unwrap_err())

        self._prompts.show_success("Encryption/decryption test passed!")
        return StepStatus.COMPLETED

    def configure_git_signing(self) -> StepStatus:
        key_id = self._ctx.require_key_id()
        self._prompts.show_info("Configuring Git signing...")

        if not self._runner.which("git"):
            return self._fatal(
                EnvironmentError("Git is not installed. Please install Git first.", missing_tool="git")
            )

        settings = [
            (["git", "config", "--global", "user.signingkey", key_id], "Failed to set Git signing key"),
            (["git", "config", "--global", "commit.gpgsign", "true"], "Failed to enable Git commit signing"),
        ]
        for command, message in settings:
            result = self._runner.run(command)
            if not result.ok:
                return self._fatal(ToolError(message, command=command, output=result.stderr))

        self._prompts.show_success("Git signing configured successfully!")
        return StepStatus.COMPLETED

    def show_final_instructions(self) -> StepStatus:
        key_id = self._ctx.pgp_key_id
        profile = self._ctx.require_platform()

        self._prompts.show_banner("Setup Complete!", style="green")
        self._prompts.show_info("Next steps:")

        self._prompts.show_text("1. Add your SSH public key to Gitea:")
        self._prompts.show_text("   - Go to Gitea -> Settings -> SSH/GPG Keys -> Manage SSH Keys")
        self._prompts.show_text("   - Use this key:")
        self._prompts.show_text()
        identities = self._agent.list_ssh_identities()
        if identities.is_ok():
            identity = first_identity(identities.unwrap())
            if identity:
                self._prompts.show_text(identity)

        self._prompts.show_text()
        self._prompts.show_text("2. Add your GPG public key to Gitea:")
        self._prompts.show_text("   - Go to Gitea -> Settings -> SSH/GPG Keys -> Manage GPG Keys")
        self._prompts.show_text("   - Use this key:")
        self._prompts.show_text()
        if key_id:
            exported = self._gpg.export_public_key(key_id)
            if exported.is_ok():
                for line in exported.unwrap().splitlines()[:EXPORT_PREVIEW_LINES]:
                    self._prompts.show_text(line)
                self._prompts.show_text("   [... truncated for display ...]")

        self._prompts.show_text()
        self._prompts.show_text("3. Source your shell configuration:")
        self._prompts.show_text(f"   source {profile.shell_profile_path}")
        self._prompts.show_text()
        self._prompts.show_text("4. Test Git signing in a repository:")
        self._prompts.show_text("   git commit -S -m 'test commit'")
        self._prompts.show_text()
        self._prompts.show_text("If you encounter any issues with Gitea, please contact your team.")
        self._prompts.show_text()

        if self._outcome.suppressed_errors:
            self._prompts.show_warning(
                f"Dry run finished with {len(self._outcome.suppressed_errors)} suppressed "
                f"error(s). Error tracking ID: {self._ctx.tracking_id}"
            )
        else:
            self._prompts.show_success(
                f"Setup completed successfully! Error tracking ID: {self._ctx.tracking_id}"
            )
        return StepStatus.COMPLETED
