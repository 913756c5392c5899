"""Terminal summaries for ingest runs and tracked archive state."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ingex.api_objects.types import IngestionRunSummary
from ingex.constants import STATUS_FAILED, STATUS_PROCESSED
from ingex.models import FileStateEntry


def _status_style(status: str) -> str:
    if status == STATUS_FAILED:
        return "bold red"
    if status == STATUS_PROCESSED:
        return "bold green"
    return "dim"


def print_run_summary(summary: IngestionRunSummary, console: Console | None = None) -> None:
    console = console or Console()
    spool = summary.spool
    dispatch = summary.dispatch
    header = (
        f"mode={summary.mode} | dry_run={summary.dry_run} | "
        f"files={spool.files_processed} processed, {spool.files_failed} failed | "
        f"rows={dispatch.rows_received} | duration={summary.duration_seconds:.2f}s"
    )
    title = "Ingestion Cancelled" if summary.cancelled else "Ingestion Complete"
    console.print(Panel(header, title=title, border_style="cyan"))

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Stage", style="bold")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    rows = [
        ("spool", "discovery passes", spool.passes),
        ("spool", "files discovered", spool.files_discovered),
        ("spool", "files processed", spool.files_processed),
        ("spool", "files failed", spool.files_failed),
        ("spool", "rows queued", spool.rows_queued),
        ("dispatch", "rows received", dispatch.rows_received),
        ("dispatch", "rows dropped", dispatch.rows_dropped),
        ("dispatch", "documents indexed", dispatch.upserts_indexed),
        ("dispatch", "tombstones indexed", dispatch.tombstones_indexed),
        ("dispatch", "documents deleted", dispatch.deletes_applied),
        ("dispatch", "failed flushes", dispatch.failed_flushes),
    ]
    for stage, metric, count in rows:
        style = "bold red" if metric in ("files failed", "failed flushes") and count else ""
        value = f"[{style}]{count}[/{style}]" if style else str(count)
        table.add_row(stage, metric, value)
    console.print(table)


def print_run_summary_json(summary: IngestionRunSummary) -> None:
    print(json.dumps(summary.to_dict(), ensure_ascii=True))


def print_file_states(entries: list[FileStateEntry], console: Console | None = None) -> None:
    console = console or Console()
    if not entries:
        console.print("[dim]No archives tracked yet.[/dim]")
        return

    table = Table(title="Archive State", show_header=True, header_style="bold cyan")
    table.add_column("File", style="bold")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Error", overflow="fold")
    for entry in entries:
        style = _status_style(entry.status)
        table.add_row(
            escape(entry.filename),
            f"[{style}]{entry.status}[/{style}]",
            entry.timestamp.isoformat(timespec="seconds"),
            escape(entry.error or ""),
        )
    console.print(table)
