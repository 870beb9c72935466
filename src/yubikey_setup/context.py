from __future__ import annotations

import getpass
import os
import platform
import re
import uuid
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from .errors import EnvironmentError, StateError
from .types import OperatingSystem, Result

EMAIL_DOMAIN = "obmondo.com"

LINUX_PINENTRY = "/usr/bin/pinentry-gnome3"
MACOS_PINENTRY = "/opt/homebrew/bin/pinentry-mac"
MACOS_SSH_AUTH_SOCK = "$(gpgconf --list-dirs agent-ssh-socket)"


def linux_agent_socket(uid: int, name: str) -> str:
    return f"/run/user/{uid}/gnupg/{name}"


@dataclass(frozen=True)
class PlatformProfile:
    """OS-dependent paths and shell syntax, resolved once per run."""

    operating_system: OperatingSystem
    shell_profile_path: Path
    pinentry_program_path: str
    ssh_auth_sock_expression: str
    shell_profile_line: str
    shell_profile_marker: str

    def profile_configured(self, content: str) -> bool:
        """True if the shell profile already carries an auth socket line."""
        if self.shell_profile_line in content:
            return True
        return re.search(self.shell_profile_marker, content) is not None


def resolve_platform(system: str, home: Path, uid: int) -> Result[PlatformProfile]:
    """Resolve the platform profile for a platform.system() style name."""
    operating_system = OperatingSystem.from_system(system)

    if operating_system == OperatingSystem.LINUX:
        socket = linux_agent_socket(uid, "S.gpg-agent.ssh")
        return Result.ok(
            PlatformProfile(
                operating_system=operating_system,
                shell_profile_path=home / ".bashrc",
                pinentry_program_path=LINUX_PINENTRY,
                ssh_auth_sock_expression=socket,
                shell_profile_line=f"SSH_AUTH_SOCK={socket}",
                shell_profile_marker=r"SSH_AUTH_SOCK=.*gnupg",
            )
        )

    if operating_system == OperatingSystem.MACOS:
        return Result.ok(
            PlatformProfile(
                operating_system=operating_system,
                shell_profile_path=home / ".bash_profile",
                pinentry_program_path=MACOS_PINENTRY,
                ssh_auth_sock_expression=MACOS_SSH_AUTH_SOCK,
                shell_profile_line=f"export SSH_AUTH_SOCK={MACOS_SSH_AUTH_SOCK}",
                shell_profile_marker=r"SSH_AUTH_SOCK.*gpgconf",
            )
        )

    return Result.err(
        EnvironmentError(
            f"OS '{system}' is not supported. This tool only works on Linux and macOS."
        )
    )


def expand_key_path(raw: str | Path, home: Path) -> Path:
    """Expand a leading ~ against the provisioning home directory."""
    text = str(raw).strip()
    if text == "~":
        return home
    if text.startswith("~/"):
        return home / text[2:]
    return Path(text)


def _current_uid() -> int:
    return os.getuid() if hasattr(os, "getuid") else -1


@dataclass
class ProvisioningContext:
    """Mutable state threaded through every provisioning step of one run."""

    system: str
    home: Path
    uid: int
    username: str
    dry_run: bool = False
    skip_pin_check: bool = False
    verbose: bool = False
    gpg_public_key_path: Path | None = None
    pgp_key_id: str = ""
    platform: PlatformProfile | None = None
    tracking_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    environ: MutableMapping[str, str] = field(default_factory=lambda: os.environ)

    _WRITE_ONCE: ClassVar[tuple[str, ...]] = ("tracking_id", "platform", "pgp_key_id")

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._WRITE_ONCE and getattr(self, name, None):
            raise StateError(f"{name} is already set for this run and cannot change")
        super().__setattr__(name, value)

    @classmethod
    def create(
        cls,
        dry_run: bool = False,
        skip_pin_check: bool = False,
        gpg_public_key_path: Path | None = None,
        verbose: bool = False,
    ) -> ProvisioningContext:
        """Build a context from the current process and user."""
        return cls(
            system=platform.system(),
            home=Path.home(),
            uid=_current_uid(),
            username=getpass.getuser(),
            dry_run=dry_run,
            skip_pin_check=skip_pin_check,
            gpg_public_key_path=gpg_public_key_path,
            verbose=verbose,
        )

    @property
    def operating_system(self) -> OperatingSystem:
        if self.platform is None:
            return OperatingSystem.from_system(self.system)
        return self.platform.operating_system

    @property
    def gnupg_dir(self) -> Path:
        return self.home / ".gnupg"

    @property
    def email_identity(self) -> str:
        return f"{self.username}@{EMAIL_DOMAIN}"

    def require_platform(self) -> PlatformProfile:
        if self.platform is None:
            raise StateError("Operating system has not been resolved")
        return self.platform

    def require_key_id(self) -> str:
        if not self.pgp_key_id:
            raise StateError("PGP key id has not been discovered")
        return self.pgp_key_id
