"""
Rich-based terminal dashboard for SpeedBuffy runs.

All formatting helpers live in ``speedbuffy.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from speedbuffy.latency import LatencySample
from speedbuffy.result import TestResult
from speedbuffy.runner import RunObserver
from speedbuffy.stats import Outcome, SpeedSample, format_latency, format_speed

console = Console()

BANNER = r"""
                         _   ___        __  __
 ___ _ __   ___  ___  __| | / __\_   _ / _|/ _|_   _
/ __| '_ \ / _ \/ _ \/ _` |/__\// | | | |_| |_| | | |
\__ \ |_) |  __/  __/ (_| / \/  \ |_| |  _|  _| |_| |
|___/ .__/ \___|\___|\__,_\_____/\__,_|_| |_|  \__, |
    |_|                                        |___/
         __
        /  \__  /\_/\  Buffy
       /\_/  _/  \_ _/  the Dog
          /  /   / \
          \_/   /_/
"""


def configure_console(color: Optional[bool] = None) -> Console:
    """
    Rebuild the module console.  ``None`` lets rich decide (no colour when
    stdout is not a terminal), ``False`` disables colour, ``True`` forces it.
    """
    global console
    if color is None:
        console = Console()
    elif color:
        console = Console(force_terminal=True)
    else:
        console = Console(no_color=True)
    return console


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: Sequence[float]) -> str:
    """Return a single-line Unicode bar-chart, one bar per value."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    top = len(_BARS) - 1
    return "".join(_BARS[min(int((v - lo) / span * top), top)] for v in values)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

_OUTCOME_STYLE = {
    Outcome.SUCCESS: ("green", "complete"),
    Outcome.PARTIAL_FAILURE: ("yellow", "partial"),
    Outcome.FAILED: ("red", "failed"),
}


def print_header() -> None:
    console.print(BANNER, style="bold cyan", highlight=False, markup=False)
    console.rule(style="dim")
    console.print()


def print_footer() -> None:
    console.rule(style="dim")


def print_phase(title: str, detail: str) -> None:
    console.print(f"\n[bold]{title}[/bold] [dim]{escape(detail)}[/dim]")


def print_latency_result(sample: LatencySample) -> None:
    table = Table(title="Latency", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Target", escape(sample.target))
    if not sample.reachable:
        table.add_row("Status", "[red]unreachable[/red]")
    table.add_row("Probes", f"{sample.probes_received}/{sample.probes_sent}")
    table.add_row("Packet Loss", f"{sample.loss_pct:.1f}%")
    table.add_row("Average", format_latency(sample.avg_ms))
    table.add_row("Jitter", f"{sample.jitter_ms:.2f} ms")
    console.print(table)

    rtts = sample.rtts_ms
    if rtts:
        console.print(
            Panel(
                f"[cyan]{create_histogram(rtts)}[/cyan]\n"
                f"[dim]Min: {min(rtts):.1f} ms  Max: {max(rtts):.1f} ms[/dim]",
                title="Probe RTTs",
            )
        )


def print_speed_result(sample: SpeedSample, title: str, color: str = "green") -> None:
    """Print a download or upload result panel."""
    style, label = _OUTCOME_STYLE[sample.outcome]

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Speed", f"[bold {color}]{format_speed(sample.mbytes_per_sec)}[/bold {color}]")
    table.add_row("Data Transferred", f"{sample.bytes_total / 1_048_576:.2f} MB")
    table.add_row("Duration", f"{sample.seconds:.2f} s")
    table.add_row("Server", escape(sample.server))
    status = f"[{style}]{label}[/{style}]"
    if sample.reason:
        status += f" [dim]({escape(sample.reason)})[/dim]"
    table.add_row("Status", status)
    console.print(table)


def print_final_results(result: TestResult) -> None:
    lat, dl, ul = result.latency, result.download, result.upload
    console.print()
    console.print(
        Panel.fit(
            f"[bold white]   Latency:[/bold white]  [bold yellow]{lat.avg_ms:.2f} ms[/bold yellow]  "
            f"[dim](loss: {lat.loss_pct:.1f}%, jitter: {lat.jitter_ms:.2f} ms)[/dim]\n"
            f"[dim]            {escape(lat.target)}[/dim]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{format_speed(dl.mbytes_per_sec)}[/bold green]  "
            f"[dim]({dl.seconds:.2f} s)[/dim]\n"
            f"[dim]            {escape(dl.server)}[/dim]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{format_speed(ul.mbytes_per_sec)}[/bold blue]  "
            f"[dim]({ul.seconds:.2f} s)[/dim]\n"
            f"[dim]            {escape(ul.server)}[/dim]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during one test phase."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[status]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._last_prog = 0.0

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, status="")
        self._last_prog = 0.0

    def update(self, progress: float, status: str = "") -> None:
        if self._task_id is None:
            return
        # Debounce: only redraw when progress moves noticeably
        if abs(progress - self._last_prog) < 0.01 and progress < 1.0:
            return
        self.progress.update(self._task_id, completed=progress * 100, status=status)
        self._last_prog = progress

    def describe(self, description: str) -> None:
        if self._task_id is not None:
            self.progress.update(self._task_id, description=description)

    def stop(self) -> None:
        self.progress.stop()
        self._task_id = None


class DashboardObserver(RunObserver):
    """Drives a ``ProgressDisplay`` and result panels from runner events."""

    _TITLES = {
        "latency": "Testing latency",
        "download": "Testing download speed",
        "upload": "Testing upload speed",
    }

    def __init__(self) -> None:
        self.display: Optional[ProgressDisplay] = None

    def phase_started(self, phase: str, detail: str) -> None:
        print_phase(self._TITLES.get(phase, phase), detail)
        self.display = ProgressDisplay()
        self.display.start(phase.capitalize())

    def probe(self, index: int, total: int, loss_pct: float) -> None:
        if self.display:
            self.display.update(index / max(total, 1), f"loss {loss_pct:.0f}%")

    def server(self, phase: str, url: str) -> None:
        if self.display:
            self.display.describe(f"{phase.capitalize()} [dim]{escape(_short_host(url))}[/dim]")

    def progress(self, phase: str, fraction: float, mbytes_per_sec: float) -> None:
        if self.display:
            status = format_speed(mbytes_per_sec) if mbytes_per_sec > 0 else "..."
            self.display.update(fraction, status)

    def latency_done(self, sample: LatencySample) -> None:
        self._stop()
        print_latency_result(sample)

    def transfer_done(self, phase: str, sample: SpeedSample) -> None:
        self._stop()
        if phase == "download":
            print_speed_result(sample, "Download Results", "green")
        else:
            print_speed_result(sample, "Upload Results", "blue")

    def _stop(self) -> None:
        if self.display:
            self.display.stop()
            self.display = None


class SummaryObserver(RunObserver):
    """One plain line per finished phase, for the JSON export modes."""

    def phase_started(self, phase: str, detail: str) -> None:
        console.print(f"Running {phase} test...", highlight=False)

    def latency_done(self, sample: LatencySample) -> None:
        console.print(
            f"Latency: [bold]{sample.avg_ms:.2f} ms[/bold] "
            f"(server: {escape(sample.target)}, loss: {sample.loss_pct:.1f}%, "
            f"jitter: {sample.jitter_ms:.2f} ms)",
            highlight=False,
        )

    def transfer_done(self, phase: str, sample: SpeedSample) -> None:
        console.print(
            f"{phase.capitalize()}: [bold]{sample.mbytes_per_sec:.2f} MB/s[/bold] "
            f"(server: {escape(sample.server)}, {sample.mbits_per_sec:.2f} Mb/s)",
            highlight=False,
        )


def _short_host(url: str) -> str:
    host = url.split("://", 1)[-1]
    return host.split("/", 1)[0]


def print_error(message: str) -> None:
    """Report *message* on stderr so JSON on stdout stays clean."""
    err = Console(stderr=True, no_color=console.no_color)
    err.print(f"[red]Error: {escape(message)}[/red]", highlight=False)
