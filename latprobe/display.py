"""Rich terminal output for latprobe."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from latprobe.config import PHASE_LABELS, PHASE_NAMES, PHASE_THRESHOLDS
from latprobe.models import LatencyReport

console = Console()
err_console = Console(stderr=True)


def _color_for_seconds(value: float, phase: str = "total") -> str:
    """Return a Rich color name based on the phase thresholds."""
    thresholds = PHASE_THRESHOLDS.get(phase, PHASE_THRESHOLDS["total"])
    if value <= thresholds["fast"]:
        return "green"
    elif value <= thresholds["medium"]:
        return "yellow"
    return "red"


def _fmt_seconds(value: float, phase: str = "total", colorize: bool = True) -> Text:
    text = f"{value:.6f} s"
    if colorize:
        return Text(text, style=_color_for_seconds(value, phase))
    return Text(text)


def build_report_table(report: LatencyReport, colorize: bool = True) -> Table:
    """Build the per-phase table for a single report."""
    table = Table(
        show_header=True,
        border_style="bright_black",
        expand=False,
        pad_edge=True,
        header_style="bold",
    )
    table.add_column("Phase", style="bold", min_width=14)
    table.add_column("Time", justify="right", min_width=12)

    phases = report.phase_seconds()
    for phase in PHASE_NAMES:
        value = phases[phase]
        # Phases that did not happen are shown dimmed rather than green.
        if phase in ("dns", "tcp", "tls") and value == 0.0:
            table.add_row(PHASE_LABELS[phase], Text(f"{value:.6f} s", style="dim"))
        else:
            table.add_row(PHASE_LABELS[phase], _fmt_seconds(value, phase, colorize))

    table.add_row(
        "Download Speed",
        Text(f"{report.download_speed_bytes_per_second:.0f} bytes/sec"),
    )
    return table


def _render_connection_info(report: LatencyReport) -> None:
    """Print status, protocol and connection reuse under the table."""
    info_parts = []
    if report.status_code is not None:
        info_parts.append(f"HTTP {report.status_code}")
    if report.http_version:
        info_parts.append(report.http_version)
    if report.tls_version:
        info_parts.append(report.tls_version)
    info_parts.append(f"{report.body_byte_count} bytes")
    if report.connection_reused:
        info_parts.append("reused connection")
    console.print(f"  [dim]{' | '.join(info_parts)}[/dim]")


def render_report(report: LatencyReport) -> None:
    """Render a report as a colored table."""
    if report.url:
        console.print(f"[bold]{report.url}[/bold]")
    console.print(build_report_table(report))
    _render_connection_info(report)


def render_error(message: str) -> None:
    """Display an error message."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def render_warning(message: str) -> None:
    """Display a warning message."""
    err_console.print(f"[yellow]Warning:[/yellow] {message}")
