"""Console rendering helpers for the mft-upload CLI."""
from __future__ import annotations

import time
from typing import Any, Dict

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .models import TransferOutcome, UploadRequest
from .orchestrator.models import BatchSummary

console = Console()


def _echo(message: str) -> None:
    console.print(message)


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else escape(str(value))
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]mft-upload[/bold green]",
        subtitle="[dim]streaming upload client[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_results(summary: BatchSummary) -> None:
    """Render one row per outcome plus totals."""
    table = Table(title="Upload results", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Identifier")
    table.add_column("Status")

    for outcome in summary.outcomes:
        if outcome.ok:
            result = outcome.result
            table.add_row(
                escape(result.name),
                _human_size(result.size),
                escape(result.identifier),
                f"[green]{result.status.value}[/green]",
            )
        else:
            table.add_row(
                escape(outcome.request.name),
                "-",
                "-",
                f"[red]{type(outcome.error).__name__}: {escape(outcome.error_message)}[/red]",
            )

    console.print(table)
    color = "green" if summary.all_success else "red"
    _echo(
        f"[{color}]{summary.uploaded}/{summary.total} uploaded[/{color}]"
        f" ({_human_size(summary.uploaded_bytes)})"
    )


class TransferProgressDisplay:
    """Event-based timeline for batch uploads."""

    def __init__(self):
        self._started: Dict[str, float] = {}

    def _emit_timeline(self, status: str, name: str, detail: str = "") -> None:
        stamp = time.strftime("%H:%M:%S")
        palette = {
            "DONE": "green",
            "FAIL": "red",
            "SEND": "cyan",
        }
        color = palette.get(status, "white")
        suffix = f" {escape(detail)}" if detail else ""
        _echo(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {escape(name)}{suffix}")

    def on_transfer_start(self, request: UploadRequest) -> None:
        self._started[request.name] = time.monotonic()
        self._emit_timeline("SEND", request.name)

    def on_transfer_complete(self, outcome: TransferOutcome) -> None:
        elapsed = self._elapsed(outcome.request.name)
        self._emit_timeline("DONE", outcome.result.name, f"{_human_size(outcome.result.size)}{elapsed}")

    def on_transfer_fail(self, outcome: TransferOutcome) -> None:
        self._emit_timeline("FAIL", outcome.request.name, f"cause={outcome.error_message}")

    def _elapsed(self, name: str) -> str:
        started = self._started.get(name)
        if started is None:
            return ""
        return f" in {time.monotonic() - started:.1f}s"
