"""Structured error types with recovery hints for YubiKey provisioning.

Every fatal condition raised by the provisioning pipeline is one of the
errors below. Each carries:
- a category matching the failure mode (environment, user precondition,
  tool failure, identifier resolution, hardware)
- recovery hints shown to the user
- the tracking identifier of the run, stamped by the pipeline
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from pathlib import Path

PASS_STORE_URL = "https://gitea.obmondo.com/EnableIT/pass"


class ErrorCategory(Enum):
    """Categories of errors for routing recovery strategies."""

    ENVIRONMENT = auto()  # Unsupported OS, missing package manager or Git
    USER_INPUT = auto()  # No PIN, missing key file
    TOOL = auto()  # Install, write or external command failures
    IDENTIFIER = auto()  # Key id and email identity both rejected
    HARDWARE = auto()  # Token not detected, SSH identity missing
    GPG = auto()  # GPG keyring inspection failures
    STATE = auto()  # Context invariant violations


@dataclass
class RecoveryHint:
    """A suggested recovery action for an error."""

    action: str
    command: str | None = None
    documentation_url: str | None = None

    def __str__(self) -> str:
        result = self.action
        if self.command:
            result += f"\n  Command: {self.command}"
        if self.documentation_url:
            result += f"\n  See: {self.documentation_url}"
        return result


@dataclass
class YubiKeySetupError(Exception):
    """Base error type with recovery hints and a run tracking identifier."""

    message: str
    category: ErrorCategory
    recovery_hints: list[RecoveryHint] = field(default_factory=list)
    cause: Exception | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    tracking_id: str | None = None

    def __str__(self) -> str:
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def format_full(self) -> str:
        """Format error with tracking id and all recovery hints."""
        prefix = f"[ERROR-{self.tracking_id}]" if self.tracking_id else "Error:"
        lines = [f"{prefix} {self.message}"]

        if self.cause:
            lines.append(f"Caused by: {self.cause}")

        if self.recovery_hints:
            lines.append("\nRecovery options:")
            for i, hint in enumerate(self.recovery_hints, 1):
                lines.append(f"  {i}. {hint}")

        return "\n".join(lines)


class EnvironmentError(YubiKeySetupError):
    """Error related to an unsupported OS or a missing host tool."""

    def __init__(
        self,
        message: str,
        missing_tool: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if missing_tool:
            install_hints = {
                "apt-get": RecoveryHint(
                    "Install prerequisites manually",
                    command="gnupg2 gnupg-agent pinentry-curses scdaemon pcscd libusb-1.0-0-dev",
                ),
                "brew": RecoveryHint(
                    "Install Homebrew first",
                    documentation_url="https://brew.sh/",
                ),
                "git": RecoveryHint(
                    "Install Git",
                    command="brew install git (macOS) or sudo apt-get install git (Linux)",
                ),
                "pinentry-mac": RecoveryHint(
                    "Install pinentry-mac",
                    command="brew install pinentry-mac",
                ),
            }
            if missing_tool in install_hints:
                hints.append(install_hints[missing_tool])

        super().__init__(
            message=message,
            category=ErrorCategory.ENVIRONMENT,
            recovery_hints=hints,
            cause=cause,
        )
        self.missing_tool = missing_tool


class PreconditionError(YubiKeySetupError):
    """Error when the user cannot satisfy a precondition (PIN, key file)."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.USER_INPUT,
            recovery_hints=[
                RecoveryHint(
                    "Obtain your YubiKey PIN and GPG public key, then run setup again",
                    documentation_url=PASS_STORE_URL,
                ),
            ],
            cause=cause,
        )


class ToolError(YubiKeySetupError):
    """Error when an external command or a file write fails."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        output: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if command:
            hints.append(RecoveryHint("Run the failing command manually", command=" ".join(command)))
        if output and "permission denied" in output.lower():
            hints.append(RecoveryHint("Check file permissions in your home directory"))
        hints.append(RecoveryHint("Fix the reported problem and run setup again"))

        super().__init__(
            message=message,
            category=ErrorCategory.TOOL,
            recovery_hints=hints,
            cause=cause,
        )
        self.command = command
        self.output = output


class IdentifierError(YubiKeySetupError):
    """Error when every candidate key identifier was rejected."""

    def __init__(
        self,
        message: str,
        candidates: list[str] | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = [
            RecoveryHint("Check the key is present", command="gpg --list-keys --keyid-format 0xlong"),
            RecoveryHint("Make sure pinentry-gnome3 is set and GPG_TTY is exported"),
        ]
        super().__init__(
            message=message,
            category=ErrorCategory.IDENTIFIER,
            recovery_hints=hints,
            cause=cause,
        )
        self.candidates = candidates or []


class HardwareError(YubiKeySetupError):
    """Error when the YubiKey is not detected or not advertised."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.HARDWARE,
            recovery_hints=[
                RecoveryHint("Replug your YubiKey and run setup again"),
                RecoveryHint("Check the card is visible", command="gpg2 --card-status"),
            ],
            cause=cause,
        )


class GPGOperationError(YubiKeySetupError):
    """Error while inspecting the GPG keyring."""

    def __init__(
        self,
        message: str,
        gpg_output: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if gpg_output and "agent" in gpg_output.lower():
            hints.append(RecoveryHint("Restart GPG agent", command="gpgconf --kill gpg-agent"))
        hints.append(RecoveryHint("Check imported keys", command="gpg2 --list-keys"))

        super().__init__(
            message=message,
            category=ErrorCategory.GPG,
            recovery_hints=hints,
            cause=cause,
        )
        self.gpg_output = gpg_output


class StateError(YubiKeySetupError):
    """Error when a provisioning context invariant is violated."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            recovery_hints=[RecoveryHint("Run setup again from the beginning")],
            cause=cause,
        )


# Error logging


class ErrorLogger:
    """Logger for structured error tracking."""

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path or Path.home() / ".yubikey-setup" / "errors.log"
        self._logger = logging.getLogger("yubikey_setup.errors")
        self._setup_logging()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _setup_logging(self) -> None:
        """Configure file logging."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

        for handler in self._logger.handlers:
            if getattr(handler, "baseFilename", None) == str(self._log_path.absolute()):
                return

        handler = logging.FileHandler(self._log_path)
        handler.setLevel(logging.WARNING)
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        handler.setFormatter(formatter)

        self._logger.addHandler(handler)
        self._logger.setLevel(logging.WARNING)

    def log_error(self, error: YubiKeySetupError) -> None:
        """Log an error with its category and tracking id."""
        context = {
            "category": error.category.name,
            "error_message": error.message,
            "tracking_id": error.tracking_id,
        }
        if error.cause:
            context["cause"] = str(error.cause)

        self._logger.error(
            f"[{error.category.name}] [ERROR-{error.tracking_id}] {error.message}",
            extra=context,
        )
