from __future__ import annotations

from dataclasses import dataclass

from .commands import CommandRunner
from .errors import EnvironmentError, ToolError
from .types import OperatingSystem, Result


@dataclass(frozen=True)
class PackagePlan:
    """How prerequisites are detected and installed on one platform."""

    manager: str
    probe: tuple[str, ...]
    install_commands: tuple[tuple[str, ...], ...]
    missing_manager_message: str


LINUX_PACKAGES = (
    "gnupg2",
    "gnupg-agent",
    "pinentry-curses",
    "scdaemon",
    "pcscd",
    "libusb-1.0-0-dev",
    "pinentry-gnome3",
)

MACOS_PACKAGES = ("gnupg", "yubikey-personalization", "pinentry-mac")

PACKAGE_PLANS: dict[OperatingSystem, PackagePlan] = {
    OperatingSystem.LINUX: PackagePlan(
        manager="apt-get",
        probe=("dpkg", "-l", "gnupg2"),
        install_commands=(
            ("sudo", "apt-get", "update"),
            ("sudo", "apt-get", "install", "-y", *LINUX_PACKAGES),
        ),
        missing_manager_message=(
            "apt-get not found. Please install prerequisites manually: "
            "gnupg2 gnupg-agent pinentry-curses scdaemon pcscd libusb-1.0-0-dev"
        ),
    ),
    OperatingSystem.MACOS: PackagePlan(
        manager="brew",
        probe=("brew", "list", "gnupg"),
        install_commands=tuple(("brew", "install", package) for package in MACOS_PACKAGES),
        missing_manager_message="Homebrew not found. Please install Homebrew first: https://brew.sh/",
    ),
}

INSTALL_FAILURE_MESSAGES = {
    ("sudo", "apt-get", "update"): "Failed to update package list",
}


class PrerequisiteInstaller:
    def __init__(self, runner: CommandRunner, operating_system: OperatingSystem) -> None:
        if operating_system not in PACKAGE_PLANS:
            raise ValueError(f"No package plan for {operating_system.value}")
        self._runner = runner
        self._plan = PACKAGE_PLANS[operating_system]

    def manager_available(self) -> bool:
        return self._runner.which(self._plan.manager)

    def is_installed(self) -> bool:
        """Query package manager state for the GnuPG package."""
        return self._runner.run_capture(list(self._plan.probe)).ok

    def install(self) -> Result[bool]:
        """Install prerequisites unless already present.

        Returns Ok(True) when packages were installed, Ok(False) when the
        install was skipped.
        """
        if not self.manager_available():
            return Result.err(
                EnvironmentError(self._plan.missing_manager_message, missing_tool=self._plan.manager)
            )

        if self.is_installed():
            return Result.ok(False)

        for command in self._plan.install_commands:
            result = self._runner.run(list(command))
            if not result.ok:
                message = INSTALL_FAILURE_MESSAGES.get(command, "Failed to install prerequisites")
                return Result.err(ToolError(message, command=list(command), output=result.stderr))

        return Result.ok(True)
