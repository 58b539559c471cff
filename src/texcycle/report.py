"""Human-readable rendering of diagnostics and pipeline progress."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console
from rich.markup import escape

from texcycle.models import LogEntry, ParseResult, StepResult

COMMAND_WIDTH = 50


def _count(value: int, severe: bool = False) -> str:
    """Color a count: zero green, non-zero red for errors, yellow otherwise."""
    if value == 0:
        return f"[green]{value}[/green]"
    if severe:
        return f"[red]{value}[/red]"
    return f"[yellow]{value}[/yellow]"


def format_counts(result: ParseResult) -> str:
    """Summary line of one pass, with rich markup."""
    counts = result.counts()
    return (
        f"\\[{_count(counts['errors'], severe=True)}] errors, "
        f"\\[{_count(counts['warnings'])}] warnings, "
        f"\\[{_count(counts['citation_warnings'])}] citation warnings, "
        f"\\[{_count(counts['typesetting'])}] typesetting"
    )


def format_entry(entry: LogEntry) -> str:
    """Render an entry as ``file:line - message`` (plain text)."""
    return f"{entry.location} - {entry.message}"


def truncate_command(command: str, width: Optional[int] = COMMAND_WIDTH) -> str:
    """Shorten a command line to ``width`` characters, ending in ``...``."""
    if width is None or len(command) <= width:
        return command
    return command[: max(width - 3, 0)] + "..."


class ConsoleReporter:
    """Prints a spinner while steps run and a summary after each engine pass."""

    def __init__(
        self,
        console: Optional[Console] = None,
        silent: bool = False,
        verbose: bool = False,
        truncate: bool = True,
    ) -> None:
        self.console = console or Console(highlight=False)
        self.silent = silent
        self.verbose = verbose
        self.truncate = truncate
        self._description = ""

    @contextmanager
    def step(self, description: str) -> Iterator[None]:
        if self.truncate:
            description = truncate_command(description)
        self._description = description
        with self.console.status(f"[bold cyan]Executing: {escape(description)}", spinner="dots"):
            yield

    def finished(self, step: StepResult, tolerated: bool = False) -> None:
        if tolerated:
            self.console.print(f"[yellow]✔[/yellow] {escape(step.name.capitalize())} failed but continuing")
            return

        mark = "[green]✔[/green]" if step.ok else "[red]✖[/red]"
        if step.report is None:
            self.console.print(f"{mark} {escape(self._description)}")
            return

        self.console.print(f"{mark} {format_counts(step.report)}")
        self.print_entries(step.report)

    def notice(self, message: str) -> None:
        self.console.print(escape(message))

    def print_entries(self, result: ParseResult) -> None:
        """List errors unless silent; list everything when verbose."""
        if not self.silent and result.errors:
            self.console.print()
            for entry in result.errors:
                self._message("error", entry)
            self.console.print()

        if self.verbose:
            if self.silent:
                for entry in result.errors:
                    self._message("error", entry)
            for entry in result.warnings:
                self._message("info", entry)
            for entry in result.typesetting:
                self._message("info", entry)

    def _message(self, level: str, entry: LogEntry) -> None:
        marker = "[bold red]>>>[/bold red]" if level == "error" else "[blue]>>>[/blue]"
        self.console.print(f"{marker} {escape(format_entry(entry))}")
