from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from wuhistory.domain.models import HistoryRecord
from wuhistory.infrastructure.repository import HistoryPage


def _fmt_mb(value: Optional[int]) -> str:
    if not value:
        return "N/A"
    return f"{value / (1024 * 1024):.2f}"


def build_records_table(records: Sequence[HistoryRecord], title: str = "Work Unit History") -> Table:
    """Build the history grid: identity, timing and production columns."""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="right", style="dim")
    table.add_column("Project (R, C, G)", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Path")
    table.add_column("Core", style="blue")
    table.add_column("Slot")
    table.add_column("Result")
    table.add_column("Frame Time", justify="right", style="green")
    table.add_column("Assigned (UTC)", no_wrap=True)
    table.add_column("Finished (UTC)", no_wrap=True)
    table.add_column("Credit", justify="right", style="bold green")
    table.add_column("PPD", justify="right", style="bold yellow")

    for record in records:
        table.add_row(
            str(record.id),
            f"{record.project_id} ({record.project_run}, {record.project_clone}, {record.project_gen})",
            record.name,
            record.path,
            record.core or "-",
            record.slot_type.value,
            record.result.name.replace("_", " ").title(),
            str(record.frame_time),
            record.assigned.strftime("%Y-%m-%d %H:%M:%S"),
            record.finished.strftime("%Y-%m-%d %H:%M:%S"),
            f"{record.credit:,.2f}",
            f"{record.ppd:,.2f}",
        )
    return table


def print_records(records: Sequence[HistoryRecord], title: str = "Work Unit History") -> None:
    console = Console()
    if not records:
        console.print("[yellow]No work units match the query.[/yellow]")
        return
    console.print(build_records_table(records, title=title))


def print_page(page: HistoryPage, title: str = "Work Unit History") -> None:
    console = Console()
    if not page.records:
        console.print(
            f"[yellow]Page {page.page} is empty ({page.total_items:,} matching work units).[/yellow]"
        )
        return
    table = build_records_table(page.records, title=title)
    table.caption = (
        f"Page {page.page} of {page.total_pages} │ {page.total_items:,} work units"
    )
    console.print(table)


def print_workload_results(results: List[Dict[str, Any]]) -> None:
    """
    Render stress workload results as a rich table, fastest first.
    """
    console = Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    table = Table(
        title="History Store Insert Workloads",
        box=box.ROUNDED,
        caption="Sorted by Throughput (descending)",
    )

    table.add_column("Workload", style="cyan", no_wrap=True)
    table.add_column("Events", justify="right", style="magenta")
    table.add_column("Threads", justify="right", style="blue")
    table.add_column("Inserted", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Throughput (events/s)", justify="right", style="bold green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")
    table.add_column("CPU %", justify="right", style="red")
    table.add_column("Status")

    sorted_results = sorted(
        results, key=lambda r: r.get("throughput_events_per_sec", 0.0), reverse=True
    )

    for res in sorted_results:
        cpu = res.get("cpu_percent") or 0.0
        if res.get("error"):
            status = f"[red]FAILED[/red] {res['error']}"
        elif res.get("ok"):
            status = "[green]OK[/green]"
        else:
            status = f"[red]MISMATCH[/red] expected {res.get('expected_rows', 0):,} rows"
        table.add_row(
            res.get("workload", "Unknown"),
            f"{res.get('events', 0):,}",
            str(res.get("threads", 0)),
            f"{res.get('inserted', 0):,}",
            f"{res.get('rows', 0):,}",
            f"{res.get('duration_seconds', 0.0):.2f}",
            f"{res.get('throughput_events_per_sec', 0.0):,.2f}",
            _fmt_mb(res.get("peak_rss_bytes")),
            f"{cpu:.1f}",
            status,
        )

    console.print(table)


__all__ = ["build_records_table", "print_page", "print_records", "print_workload_results"]
