from __future__ import annotations

from dataclasses import dataclass, field

from .agent_ops import has_token_identity
from .commands import CommandRunner, SubprocessRunner
from .context import ProvisioningContext, resolve_platform
from .gpg_ops import GPGOperations
from .types import OperatingSystem

GNUPG_CONFIG_FILES = ("gpg.conf", "gpg-agent.conf", "dirmngr.conf")
BASE_EXECUTABLES = ("gpg", "gpg2", "gpg-agent")
PINENTRY_EXECUTABLES = {
    OperatingSystem.LINUX: "pinentry-gnome3",
    OperatingSystem.MACOS: "pinentry-mac",
}


@dataclass
class CheckResult:
    """Result of an environment check."""

    name: str
    passed: bool
    message: str
    critical: bool = True
    fix_hint: str | None = None


@dataclass
class EnvironmentReport:
    """Complete environment verification report."""

    system: str
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks if c.critical)

    @property
    def critical_failures(self) -> list[CheckResult]:
        return [c for c in self.checks if c.critical and not c.passed]


def check_operating_system(ctx: ProvisioningContext) -> CheckResult:
    """Check the host OS is one the provisioning pipeline supports."""
    result = resolve_platform(ctx.system, ctx.home, ctx.uid)
    if result.is_ok():
        return CheckResult(
            name="Operating System",
            passed=True,
            message=f"{result.unwrap().operating_system.display_name} is supported",
        )
    return CheckResult(
        name="Operating System",
        passed=False,
        message=str(result.unwrap_err()),
        fix_hint="Run yubikey-setup on Linux or macOS",
    )


def check_executable(runner: CommandRunner, name: str, fix_hint: str | None = None) -> CheckResult:
    if runner.which(name):
        return CheckResult(name=name, passed=True, message=f"{name} found in PATH")
    return CheckResult(
        name=name,
        passed=False,
        message=f"{name} not found in PATH",
        fix_hint=fix_hint or "Run yubikey-setup setup to install prerequisites",
    )


def check_gnupg_config(ctx: ProvisioningContext) -> list[CheckResult]:
    """Check the GnuPG directory and the files setup writes into it."""
    gnupghome = ctx.gnupg_dir
    if not gnupghome.is_dir():
        return [
            CheckResult(
                name="GnuPG Directory",
                passed=False,
                message=f"{gnupghome} does not exist",
                fix_hint="Run yubikey-setup setup to write the GPG configuration",
            )
        ]

    checks = [CheckResult(name="GnuPG Directory", passed=True, message=f"Found: {gnupghome}")]
    for filename in GNUPG_CONFIG_FILES:
        conf_path = gnupghome / filename
        if conf_path.is_file():
            checks.append(CheckResult(name=filename, passed=True, message=f"Found: {conf_path}"))
        else:
            checks.append(
                CheckResult(
                    name=filename,
                    passed=False,
                    message=f"{conf_path} is missing",
                    critical=False,
                    fix_hint="Run yubikey-setup setup to write the GPG configuration",
                )
            )
    return checks


def check_card_status(runner: CommandRunner) -> CheckResult:
    """Check the YubiKey answers gpg2 --card-status."""
    result = runner.run_capture(["gpg2", "--card-status"])
    if result.ok:
        return CheckResult(name="YubiKey Detection", passed=True, message="YubiKey detected")
    return CheckResult(
        name="YubiKey Detection",
        passed=False,
        message="No YubiKey detected by gpg2 --card-status",
        fix_hint="Replug your YubiKey and check pcscd/scdaemon are running",
    )


def check_secret_keys(runner: CommandRunner) -> CheckResult:
    listing = GPGOperations(runner).list_secret_keys()
    if listing.is_ok() and listing.unwrap().strip():
        return CheckResult(
            name="Secret Keys",
            passed=True,
            message="Secret key stubs present",
            critical=False,
        )
    return CheckResult(
        name="Secret Keys",
        passed=False,
        message="No secret keys listed",
        critical=False,
        fix_hint="Insert your YubiKey and run gpg2 --card-status to create key stubs",
    )


def check_ssh_agent(runner: CommandRunner) -> list[CheckResult]:
    """Check the SSH agent lists identities and one of them is on the token."""
    result = runner.run_capture(["ssh-add", "-L"])
    if not result.ok or not result.stdout.strip():
        return [
            CheckResult(
                name="SSH Agent",
                passed=False,
                message="ssh-add -L lists no identities",
                fix_hint="Source your shell profile so SSH_AUTH_SOCK points at gpg-agent",
            )
        ]

    checks = [CheckResult(name="SSH Agent", passed=True, message="SSH agent has identities")]
    if has_token_identity(result.stdout):
        checks.append(
            CheckResult(
                name="YubiKey SSH Identity",
                passed=True,
                message="SSH identity served by the YubiKey",
                critical=False,
            )
        )
    else:
        checks.append(
            CheckResult(
                name="YubiKey SSH Identity",
                passed=False,
                message="No cardno: identity in ssh-add -L output",
                critical=False,
                fix_hint="Replug your YubiKey and restart gpg-agent",
            )
        )
    return checks


def verify_environment(
    ctx: ProvisioningContext,
    runner: CommandRunner | None = None,
) -> EnvironmentReport:
    """Run all non-mutating checks and return a report."""
    runner = runner or SubprocessRunner()
    report = EnvironmentReport(system=ctx.system)

    report.checks.append(check_operating_system(ctx))

    for name in BASE_EXECUTABLES:
        report.checks.append(check_executable(runner, name))
    pinentry = PINENTRY_EXECUTABLES.get(ctx.operating_system)
    if pinentry:
        report.checks.append(check_executable(runner, pinentry))

    report.checks.extend(check_gnupg_config(ctx))
    report.checks.append(check_card_status(runner))
    report.checks.append(check_secret_keys(runner))
    report.checks.extend(check_ssh_agent(runner))

    return report
