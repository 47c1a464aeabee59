"""
Console output for treeseal: verdict lines, the summary table and the progress bar.
"""

from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from common import (
    DEFAULT_MAX_MOVED_CANDIDATES,
    EXTRA,
    MATCHED,
    MISMATCHED,
    MOVED,
    SKIPPED,
    ReconciliationSummary,
    Verdict,
)


class Reporter:
    """Renders verify results. With quiet=True nothing reaches the terminal."""

    def __init__(
        self,
        quiet: bool = False,
        max_moved_candidates: int = DEFAULT_MAX_MOVED_CANDIDATES,
        show_matched: bool = False,
        console: Optional[Console] = None,
    ) -> None:
        self.quiet = quiet
        self.max_moved_candidates = max_moved_candidates
        self.show_matched = show_matched
        self.console = console or Console(highlight=False)
        if quiet:
            self.console.quiet = True

    def verdict(self, verdict: Verdict) -> None:
        if self.quiet:
            return
        out = self.console
        if verdict.kind == MATCHED:
            if self.show_matched:
                out.print(f"[green]MATCHED[/green] {escape(verdict.path)}", emoji=False)
        elif verdict.kind == MISMATCHED:
            out.print(f"[red]MISMATCH[/red] {escape(verdict.path)}", emoji=False)
            out.print(f"  expected: {verdict.expected_digest}")
            out.print(f"  found:    {verdict.found_digest}")
        elif verdict.kind == SKIPPED:
            out.print(
                f"[blue]SKIPPED[/blue] {escape(verdict.path)} (modified time differs, hash ignored)",
                emoji=False,
            )
        elif verdict.kind == MOVED:
            out.print(f"[yellow]MOVED[/yellow] {escape(verdict.path)}", emoji=False)
            candidates = verdict.previous_paths
            if len(candidates) > self.max_moved_candidates:
                out.print(f"  previously: one of {len(candidates)} files with this content")
            else:
                out.print(f"  previously: {', '.join(candidates)}", markup=False, emoji=False)
        elif verdict.kind == EXTRA:
            out.print(f"[blue]EXTRA[/blue] {escape(verdict.path)}", emoji=False)
        if verdict.updated and verdict.kind in (SKIPPED, EXTRA):
            out.print("[cyan]+[/cyan] Added to reference list")

    def verdicts(self, verdicts: Iterable[Verdict]) -> None:
        for verdict in verdicts:
            self.verdict(verdict)

    def summary(self, summary: ReconciliationSummary) -> None:
        if self.quiet:
            return
        table = Table(title="Summary", title_style="bold underline")
        table.add_column("Verified", justify="right", style="green")
        table.add_column("Moved", justify="right", style="yellow")
        table.add_column("Mismatched", justify="right", style="red")
        table.add_column("Skipped", justify="right", style="blue")
        table.add_column("Extra", justify="right", style="blue")
        table.add_row(
            str(summary.matched),
            str(summary.moved),
            str(summary.mismatched),
            str(summary.skipped),
            str(summary.extra),
        )
        self.console.print()
        self.console.print(table)

    def message(self, text: str) -> None:
        """Print plain text; brackets and colons in paths are not interpreted."""
        if not self.quiet:
            self.console.print(text, markup=False, emoji=False)

    def failure(self) -> None:
        if not self.quiet:
            self.console.print()
            self.console.print("[bold red]One or more mismatches found![/bold red]")


@contextmanager
def progress_bar(
    total: int, enabled: bool, console: Optional[Console] = None
) -> Iterator[Callable[[int], None]]:
    """Yield a progress callback that advances a bar by one file per call."""
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not enabled,
    ) as progress:
        task = progress.add_task("Hashing", total=total)
        yield lambda _processed: progress.update(task, advance=1)
