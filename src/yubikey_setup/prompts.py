from __future__ import annotations

import logging

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from .errors import YubiKeySetupError

logger = logging.getLogger(__name__)

PIN_CONTACTS = "Please contact Klavs or Ashish to get your PIN."
PIN_REFERENCE = "Reference: https://gitea.obmondo.com/EnableIT/pass"


class Prompts:
    """Interactive questions and status output for the provisioning run."""

    def __init__(self, console: Console | None = None, err_console: Console | None = None) -> None:
        self._console = console or Console()
        self._err_console = err_console or Console(stderr=True)

    @property
    def console(self) -> Console:
        return self._console

    # Questions

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self._console)

    def confirm_pin_possession(self) -> bool:
        return self.confirm("Do you have your YubiKey PIN?")

    def show_pin_help(self) -> None:
        self._console.print("[yellow]You need your YubiKey PIN to proceed.[/yellow]")
        self._console.print(PIN_CONTACTS)
        self._console.print(PIN_REFERENCE)

    def get_key_path(self) -> str:
        return Prompt.ask(
            "Enter the path to your GPG public key (e.g., ~/abc.key)",
            console=self._console,
        )

    def wait_for_yubikey(self) -> None:
        self._console.print(
            "\n[yellow]Please insert your YubiKey if not already inserted "
            "and press Enter to continue...[/yellow]"
        )
        try:
            self._console.input()
        except EOFError:
            # No terminal to wait on; card detection in the next step decides.
            logger.debug("stdin closed, not waiting for the YubiKey")

    # Output

    def show_banner(self, title: str, subtitle: str | None = None, style: str = "blue") -> None:
        body = f"[bold]{escape(title)}[/bold]"
        if subtitle:
            body += f"\n{escape(subtitle)}"
        self._console.print(Panel(body, border_style=style, expand=True))

    def show_step(self, step_number: int, total_steps: int, description: str) -> None:
        self._console.print()
        self._console.print(
            f"[bold cyan][Step {step_number}/{total_steps}][/bold cyan] {escape(description)}"
        )

    def show_info(self, message: str) -> None:
        self._console.print(f"[blue][INFO][/blue] {escape(message)}")

    def show_success(self, message: str) -> None:
        self._console.print(f"[green][SUCCESS][/green] {escape(message)}")

    def show_warning(self, message: str) -> None:
        self._console.print(f"[yellow][WARNING][/yellow] {escape(message)}")

    def show_error(self, error: YubiKeySetupError) -> None:
        """Print a fatal error with its tracking id and recovery hints to stderr."""
        self._err_console.print(error.format_full(), style="red", markup=False, highlight=False)

    def show_text(self, text: str = "") -> None:
        self._console.print(escape(text), highlight=False)


class MockPrompts(Prompts):
    """Mock prompts for testing - returns pre-configured values."""

    def __init__(
        self,
        has_pin: bool = True,
        key_path: str = "~/public.key",
        confirmations: bool = True,
    ) -> None:
        super().__init__(Console(quiet=True), Console(quiet=True))
        self._has_pin = has_pin
        self._key_path = key_path
        self._confirmations = confirmations
        self.messages: list[tuple[str, str]] = []
        self.waited_for_yubikey = 0

    def confirm(self, message: str, default: bool = False) -> bool:
        return self._confirmations

    def confirm_pin_possession(self) -> bool:
        return self._has_pin

    def get_key_path(self) -> str:
        return self._key_path

    def wait_for_yubikey(self) -> None:
        self.waited_for_yubikey += 1

    def show_info(self, message: str) -> None:
        self.messages.append(("info", message))

    def show_success(self, message: str) -> None:
        self.messages.append(("success", message))

    def show_warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def show_error(self, error: YubiKeySetupError) -> None:
        self.messages.append(("error", error.format_full()))

    def show_text(self, text: str = "") -> None:
        self.messages.append(("text", text))

    def messages_of(self, kind: str) -> list[str]:
        return [message for level, message in self.messages if level == kind]
