"""Console reporter using Rich library for formatted CLI output.

Provides colorful, formatted output while events are handled:
- A header when generation starts for an issue
- The generated test cases, or the reason an event was skipped
- A summary table at the end
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

from testgenr.models import GenerationOutcome, GenerationResult, TestCaseRecord
from testgenr.reporters.base import Reporter

OUTCOME_MARKUP = {
    GenerationOutcome.GENERATED: "[green]GENERATED[/green]",
    GenerationOutcome.SKIPPED: "[dim]SKIPPED[/dim]",
    GenerationOutcome.FAILED: "[red]FAILED[/red]",
}


class ConsoleReporter(Reporter):
    """Rich-based console reporter for CLI output.

    Args:
        quiet: If True, suppress per-issue output (only show summary)
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = console or Console(legacy_windows=True)
        self.quiet = quiet

    def on_generation_start(self, issue_key: str) -> None:
        """Displays a header with the issue key."""
        if self.quiet:
            return
        self.console.print()
        self.console.print(
            Rule(f"[bold cyan]Generating: {issue_key}[/bold cyan]", style="cyan", characters="-")
        )

    def on_generation_skipped(self, issue_key: Optional[str], reason: str) -> None:
        if self.quiet:
            return
        self.console.print(f"  [dim][SKIP] {issue_key or '-'}: {escape(reason)}[/dim]")

    def on_generation_complete(self, result: GenerationResult) -> None:
        """Displays the generated test cases or the failure."""
        if self.quiet:
            return

        status = OUTCOME_MARKUP.get(result.outcome, result.outcome.value)
        self.console.print(
            f"{result.issue_key}: {status} in {result.duration_seconds:.1f}s"
        )
        if result.error_message:
            self.console.print(f"   [dim red]{escape(result.error_message)}[/dim red]")
        for record in result.records:
            self.console.print(f"  - {escape(record.label)} [dim]({record.id})[/dim]")

    def on_run_complete(self, results: list[GenerationResult]) -> None:
        """Displays a summary table of every handled event."""
        if not results:
            self.console.print("[yellow]No events handled.[/yellow]")
            return

        self.console.print()
        self.console.print(Rule("[bold]Generation Summary[/bold]", style="magenta", characters="-"))

        table = Table(
            show_header=True,
            header_style="bold magenta",
            border_style="dim",
            box=box.ASCII,
        )
        table.add_column("Issue", style="cyan", no_wrap=True)
        table.add_column("Outcome", justify="center", no_wrap=True)
        table.add_column("Test Cases", justify="right")
        table.add_column("Details")

        for result in results:
            details = result.reason or result.error_message or ""
            table.add_row(
                result.issue_key or "-",
                OUTCOME_MARKUP.get(result.outcome, result.outcome.value),
                str(len(result.records)),
                escape(details),
            )

        self.console.print(table)
        self.console.print()

    def print_records(self, issue_key: str, records: list[TestCaseRecord]) -> None:
        """Print the stored test cases of one issue as a table."""
        table = Table(title=f"Test cases for {issue_key}", box=box.ASCII, show_header=True)
        table.add_column("Id", style="dim", no_wrap=True)
        table.add_column("Label")
        for record in records:
            table.add_row(record.id, escape(record.label))
        self.console.print(table)
