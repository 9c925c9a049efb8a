"""Operator-facing input and report surfaces."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .models import ProfileRecord, RemovalAction, RemovalResult


class InputProvider(Protocol):
    """Source of operator decisions."""

    def ask_host(self) -> str: ...

    def ask_keep_names(self) -> list[str]: ...

    def confirm(self, message: str) -> bool: ...


class ReportSink(Protocol):
    """Destination for everything shown to the operator."""

    def show_profiles(self, title: str, profiles: Sequence[ProfileRecord]) -> None: ...

    def show_results(self, title: str, results: Sequence[RemovalResult]) -> None: ...

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class ConsolePrompter:
    """Interactive prompts on the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ask_host(self) -> str:
        """Ask for a target host until a non-empty name is given."""
        while True:
            host = Prompt.ask("Target computer name", console=self.console).strip()
            if host:
                return host
            self.console.print("[yellow]Computer name cannot be empty[/yellow]")

    def ask_keep_names(self) -> list[str]:
        """Read user names to keep, one per line, until a blank line."""
        self.console.print("Enter user names to keep, one per line. Leave blank to finish.")
        names: list[str] = []
        while True:
            name = Prompt.ask("Keep", default="", show_default=False, console=self.console).strip()
            if not name:
                return names
            names.append(name)

    def confirm(self, message: str) -> bool:
        return Confirm.ask(message, default=False, console=self.console)


class ConsoleReport:
    """Rich tables and coloured messages for profile listings and results."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def show_profiles(self, title: str, profiles: Sequence[ProfileRecord]) -> None:
        if not profiles:
            self.console.print(f"[dim]{title}: none[/dim]")
            return

        table = Table(title=f"{title} ({len(profiles)})")
        table.add_column("Name", style="cyan")
        table.add_column("SID", style="dim")
        table.add_column("Path")
        table.add_column("Last Used", style="dim")
        table.add_column("Loaded")

        for profile in profiles:
            table.add_row(
                escape(profile.name),
                profile.security_id,
                escape(profile.storage_path),
                profile.last_use_time.strftime("%Y-%m-%d %H:%M") if profile.last_use_time else "-",
                "[yellow]yes[/yellow]" if profile.is_loaded else "no",
            )

        self.console.print(table)

    def show_results(self, title: str, results: Sequence[RemovalResult]) -> None:
        if not results:
            self.console.print(f"[dim]{title}: none[/dim]")
            return

        table = Table(title=f"{title} ({len(results)})")
        table.add_column("Name", style="cyan")
        table.add_column("SID", style="dim")
        table.add_column("Action")
        table.add_column("Reason")

        for result in results:
            action = "[green]removed[/green]" if result.action is RemovalAction.REMOVED else "[yellow]skipped[/yellow]"
            table.add_row(escape(result.profile.name), result.profile.security_id, action, escape(str(result.reason)))

        self.console.print(table)

    def info(self, message: str) -> None:
        self.console.print(f"[green]{escape(message)}[/green]")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]{escape(message)}[/red]")
