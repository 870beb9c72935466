from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import __version__
from .commands import CommandRunner, SubprocessRunner
from .context import ProvisioningContext
from .environment import EnvironmentReport, verify_environment
from .errors import ErrorLogger, YubiKeySetupError
from .pipeline import ProvisioningPipeline
from .prompts import Prompts

ERROR_LOG_DIR = ".yubikey-setup"
ERROR_LOG_NAME = "errors.log"
EXIT_INTERRUPTED = 130

console = Console()
logger = logging.getLogger(__name__)


def add_common_flags(parser: argparse.ArgumentParser, default: object = False) -> None:
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=default,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=default,
        help="Describe every action without changing anything",
    )


def get_parser() -> argparse.ArgumentParser:
    # Subcommands accept the flags too; SUPPRESS keeps a value given before the subcommand.
    common = argparse.ArgumentParser(add_help=False)
    add_common_flags(common, default=argparse.SUPPRESS)

    parser = argparse.ArgumentParser(
        prog="yubikey-setup",
        description="Configure GPG, SSH and Git signing for a pre-provisioned YubiKey",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    add_common_flags(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    setup_parser = subparsers.add_parser(
        "setup", parents=[common], help="Run the YubiKey setup pipeline"
    )
    setup_parser.add_argument(
        "--gpg-key",
        "-k",
        type=Path,
        default=None,
        help="Path to your GPG public key file (prompted for if omitted)",
    )
    setup_parser.add_argument(
        "--skip-pin",
        action="store_true",
        help="Skip the YubiKey PIN confirmation (not recommended)",
    )

    subparsers.add_parser(
        "check", parents=[common], help="Check the current setup without changing anything"
    )

    return parser


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        )


def error_log_path(home: Path) -> Path:
    return home / ERROR_LOG_DIR / ERROR_LOG_NAME


def show_environment_report(report: EnvironmentReport) -> None:
    """Display environment verification report."""
    table = Table(title="YubiKey Setup Check")
    table.add_column("Status")
    table.add_column("Check", style="cyan")
    table.add_column("Details")

    for check in report.checks:
        status = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
        if not check.critical and not check.passed:
            status = "[yellow]WARN[/yellow]"
        details = check.message
        if check.fix_hint and not check.passed:
            details += f"\nFix: {check.fix_hint}"
        table.add_row(status, check.name, details)

    console.print(f"System: {report.system}")
    console.print(table)

    if report.all_passed:
        console.print("\n[green]All critical checks passed.[/green]")
    else:
        console.print("\n[red]Some critical checks failed. Run yubikey-setup setup to fix them.[/red]")


def report_fatal(error: YubiKeySetupError, ctx: ProvisioningContext, prompts: Prompts) -> None:
    """Print a fatal error to stderr and append it to the error log."""
    prompts.show_error(error)

    if ctx.dry_run:
        return

    try:
        ErrorLogger(error_log_path(ctx.home)).log_error(error)
    except OSError as e:
        logger.warning("Could not write error log: %s", e)


def cmd_setup(
    ns: argparse.Namespace,
    runner: CommandRunner | None = None,
    prompts: Prompts | None = None,
    ctx: ProvisioningContext | None = None,
) -> int:
    """Run the provisioning pipeline."""
    ctx = ctx or ProvisioningContext.create(
        dry_run=ns.dry_run,
        skip_pin_check=ns.skip_pin,
        gpg_public_key_path=ns.gpg_key,
        verbose=ns.verbose,
    )
    prompts = prompts or Prompts()
    prompts.show_banner("YubiKey Setup", subtitle=f"Tracking ID: {ctx.tracking_id}")

    pipeline = ProvisioningPipeline(ctx, runner or SubprocessRunner(), prompts)
    try:
        outcome = pipeline.run()
    except YubiKeySetupError as e:
        report_fatal(e, ctx, prompts)
        return 1

    logger.debug("Pipeline outcome: %s", outcome.to_dict())
    return 0


def cmd_check(
    ns: argparse.Namespace,
    runner: CommandRunner | None = None,
    ctx: ProvisioningContext | None = None,
) -> int:
    """Verify the current setup without changing anything."""
    ctx = ctx or ProvisioningContext.create(verbose=ns.verbose)
    report = verify_environment(ctx, runner or SubprocessRunner())
    show_environment_report(report)
    return 0 if report.all_passed else 1


def run(args: list[str]) -> int:
    """Main entry point."""
    parser = get_parser()
    ns = parser.parse_args(args)

    configure_logging(ns.verbose)

    try:
        if ns.command == "setup":
            return cmd_setup(ns)
        elif ns.command == "check":
            return cmd_check(ns)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return EXIT_INTERRUPTED

    parser.print_help()
    return 1
