"""
Run summary renderer.

Presentation-only: turns a `RunResult` (and its optional multi-rank
analysis) into Rich renderables for the CLI.
"""

import shutil

from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from compiletrace.analysis.schema import MultiRankResult
from compiletrace.utils.formatting import fmt_count, fmt_ns


def _panel_width() -> int:
    cols, _ = shutil.get_terminal_size()
    return min(max(80, int(cols * 0.75)), 110)


def render_run_summary(result) -> Panel:
    """
    Return a Rich Panel summarizing a run.
    """
    table = Table.grid(padding=(0, 2))
    table.add_column(justify="left", style="bold green")
    table.add_column(justify="left", style="white")

    status = "[green]ok[/green]" if result.success else f"[red]{result.status}[/red]"
    table.add_row("Status", status)
    if result.error:
        table.add_row("Error", f"[red]{result.error}[/red]")
    table.add_row("Envelopes", fmt_count(result.envelopes_processed))
    table.add_row(
        "Dropped",
        f"{fmt_count(result.dropped)} "
        f"({fmt_count(result.malformed)} malformed, {fmt_count(result.unknown)} unknown type)",
    )
    if result.dangling_references:
        table.add_row("Dangling refs", fmt_count(result.dangling_references))
    table.add_row("Compile ids", fmt_count(result.compile_ids))
    table.add_row("Modules run", fmt_count(len(result.modules_run)))
    table.add_row("Files", fmt_count(len(result.files)))
    if result.output_dir is not None:
        table.add_row("Report", f"{result.output_dir / 'index.html'}")

    body = table
    if result.multi_rank is not None:
        body = Group(table, render_multi_rank(result.multi_rank))

    return Panel(
        body,
        title="[bold cyan]Compile Trace Report[/bold cyan]",
        title_align="center",
        border_style="cyan" if result.success else "red",
        width=_panel_width(),
    )


def render_multi_rank(result: MultiRankResult) -> Table:
    table = Table(title="Multi-Rank Analysis", show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Result")

    table.add_row("Status", result.status_message)
    table.add_row("Ranks", ", ".join(map(str, result.ranks)) or "-")
    for rank, reason in result.excluded_ranks.items():
        table.add_row(f"Excluded rank {rank}", f"[yellow]{reason}[/yellow]")
    if not result.comparable:
        return table

    if result.compile_ids is not None:
        divergent = result.compile_ids.divergent_ranks
        table.add_row(
            "Compile ids",
            f"[red]ranks {divergent} differ[/red]" if divergent else "[green]consistent[/green]",
        )
    diverged = [s for s in result.collective_schedules if s.diverged]
    table.add_row(
        "Collective schedules",
        f"[red]{len(diverged)} graph(s) diverge[/red]" if diverged else "[green]consistent[/green]",
    )
    if result.runtime_variance:
        worst = max(result.runtime_variance, key=lambda v: v.std_ns)
        table.add_row("Runtime std (max)", f"{worst.graph}: {fmt_ns(worst.std_ns)}")
    if result.tensor_metadata is not None:
        divergent = result.tensor_metadata.divergent_ranks
        table.add_row(
            "Tensor metadata",
            f"[red]ranks {divergent} differ[/red]" if divergent else "[green]consistent[/green]",
        )
    return table
