"""Main entry point for profile cleanup."""

from __future__ import annotations

import argparse
import codecs
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .config import TRANSPORTS, CleanupConfig, ConfigError
from .console import ConsolePrompter, ConsoleReport
from .inventory import InvalidHostError, InventoryError, create_inventory_source
from .models import ReasonKind
from .session import RemovalSession, setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.

    """
    parser = argparse.ArgumentParser(
        prog="profile-cleanup",
        description="Remove stale local user profiles from Windows hosts",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default=None,
        help="Override the configured PowerShell transport",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="WinRM user name (winrm transport only)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Remove command (default)
    remove_parser = subparsers.add_parser("remove", help="Remove profiles not on the keep list")
    remove_parser.add_argument("--host", default=None, help="Target computer name")
    remove_parser.add_argument(
        "--keep",
        action="append",
        default=None,
        metavar="NAME",
        help="User name to keep (repeatable)",
    )
    remove_parser.add_argument(
        "--keep-file",
        type=Path,
        default=None,
        help="File with user names to keep, one per line",
    )
    remove_parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Do not ask for confirmation before removing",
    )
    remove_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without removing anything",
    )

    # List command
    list_parser = subparsers.add_parser("list", help="List profiles on a host")
    list_parser.add_argument("--host", default=None, help="Target computer name")

    # Config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "--init",
        action="store_true",
        help="Create default configuration file",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )

    return parser.parse_args(argv)


def read_keep_file(path: Path) -> list[str]:
    """Read newline-delimited user names, ignoring blank lines and # comments.

    UTF-8 (with or without BOM) and UTF-16 with a BOM, as written by
    Windows PowerShell redirection, are accepted.
    """
    raw = path.read_bytes()
    encoding = "utf-16" if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)) else "utf-8-sig"

    names: list[str] = []
    for line in raw.decode(encoding).splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            names.append(line)
    return names


def collect_keep_names(args: argparse.Namespace) -> list[str] | None:
    """Gather keep names from the command line; None means ask interactively."""
    keep = getattr(args, "keep", None)
    keep_file = getattr(args, "keep_file", None)
    if keep is None and keep_file is None:
        return None

    names = list(keep or [])
    if keep_file is not None:
        names.extend(read_keep_file(keep_file))
    return names


def _winrm_password(config: CleanupConfig, console: Console) -> str | None:
    if config.transport != "winrm":
        return None
    password = os.environ.get(config.winrm.password_env)
    if password is None and config.winrm.username:
        password = Prompt.ask(f"Password for {config.winrm.username}", password=True, console=console)
    return password


def _build_session(config: CleanupConfig, console: Console) -> RemovalSession:
    logger = setup_logging(config)
    source = create_inventory_source(config, logger, _winrm_password(config, console))
    return RemovalSession(config, source, ConsolePrompter(console), ConsoleReport(console), logger)


def cmd_remove(config: CleanupConfig, args: argparse.Namespace) -> int:
    """Execute remove command.

    Args:
        config: Cleanup configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    console = Console()
    keep_names = collect_keep_names(args)
    session = _build_session(config, console)

    outcome = session.run(
        getattr(args, "host", None),
        keep_names,
        assume_yes=getattr(args, "yes", False),
        dry_run=getattr(args, "dry_run", False),
    )

    if outcome.cancelled:
        return 0
    failed = sum(1 for r in outcome.skipped if r.reason.kind is ReasonKind.REMOVAL_FAILED)
    console.print(f"Removed {len(outcome.removed)} profiles, {len(outcome.skipped)} skipped ({failed} failed)")
    return 0


def cmd_list(config: CleanupConfig, args: argparse.Namespace) -> int:
    """Execute list command.

    Args:
        config: Cleanup configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    session = _build_session(config, Console())
    session.list_inventory(args.host)
    return 0


def cmd_config(config: CleanupConfig, args: argparse.Namespace) -> int:
    """Execute config command.

    Args:
        config: Cleanup configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    console = Console()

    if args.init:
        config_path = args.config or CleanupConfig.get_config_path()
        if config_path.exists():
            console.print(f"[yellow]Config already exists: {config_path}[/yellow]")
            return 1
        config.save(config_path)
        console.print(f"[green]Created config: {config_path}[/green]")
        return 0

    if args.show:
        table = Table(title="Current Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Transport", config.transport)
        if config.transport == "winrm":
            table.add_row("WinRM port", str(config.winrm.port))
            table.add_row("WinRM auth", config.winrm.transport)
            table.add_row("WinRM user", config.winrm.username or "-")
        else:
            table.add_row("PowerShell", config.powershell_executable)
        table.add_row("Command timeout", f"{config.command_timeout}s")
        table.add_row("System SIDs", "\n".join(config.system_sids))
        table.add_row("Default keep list", "\n".join(config.default_keep_names) or "-")
        table.add_row("Confirm before delete", str(config.confirm_before_delete))
        table.add_row("Audit log directory", str(config.audit_log_dir))
        table.add_row("Log file", str(config.log_file))
        table.add_row("Log level", config.log_level)

        console.print(table)
        return 0

    console.print("[yellow]Use --init or --show[/yellow]")
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code.

    """
    args = parse_args(argv)
    console = Console(stderr=True)

    try:
        config = CleanupConfig.load(args.config)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        return 2

    if args.transport:
        config.transport = args.transport
    if args.user:
        config.winrm.username = args.user

    # Default to remove command
    command = args.command or "remove"

    try:
        if command == "remove":
            return cmd_remove(config, args)
        elif command == "list":
            return cmd_list(config, args)
        elif command == "config":
            return cmd_config(config, args)
        else:
            print(f"Unknown command: {command}")
            return 1
    except InventoryError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    except (InvalidHostError, OSError) as e:
        console.print(f"[red]{e}[/red]")
        return 2
    except UnicodeDecodeError as e:
        console.print(f"[red]Keep file is not UTF-8 or UTF-16 text: {e}[/red]")
        return 2
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
