"""Console rendering of a benchmark run.

The core hands over plain ``(label, value_ms)`` pairs; everything about how
they look lives here.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from rich.bar import Bar
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from latbench.config import Settings
from latbench.models import BenchmarkReport


# Chart scale in ms; widened automatically when a value exceeds it
CHART_MAX_MS = 110.0
BAR_WIDTH = 40


def render_header(console: Console, rtt_seconds: float, settings: Settings) -> None:
    console.print()
    console.print(f"[bold]RTT[/bold]:        {rtt_seconds * 1000:.3f}ms")
    console.print(f"[bold]Responders[/bold]: {settings.num_responders}")
    console.print(f"[bold]Duplicated[/bold]: {settings.num_replicas}")
    console.print(f"[bold]Requests[/bold]:   {settings.num_requests}")
    console.print()


def build_chart(summary: Iterable[Tuple[str, float]], max_ms: float = CHART_MAX_MS) -> Panel:
    """Horizontal bar chart of the summary, one row per label."""
    points = list(summary)
    scale = max([max_ms] + [v for _, v in points if v == v])
    table = Table.grid(padding=(0, 1))
    table.add_column(justify="right", style="bold")
    table.add_column(width=BAR_WIDTH)
    table.add_column(justify="right")
    for label, value in points:
        if value != value:  # NaN: nothing measured
            table.add_row(label, "", "-")
            continue
        table.add_row(label, Bar(size=scale, begin=0, end=value, width=BAR_WIDTH, color="grey70"), f"{value:.0f}")
    return Panel(table, title=" Latency(ms)", title_align="left", expand=False)


def render_report(console: Console, report: BenchmarkReport) -> None:
    console.print(build_chart((p.label, p.value_ms) for p in report.summary))
    if report.num_replicas > 1 and report.group_wins:
        wins = ", ".join(f"qg:{g}={n}" for g, n in report.group_wins.items())
        console.print(f"[bold]Wins[/bold]: {wins}")
    console.print()


def render_json(report: BenchmarkReport) -> str:
    return report.model_dump_json(indent=2)
