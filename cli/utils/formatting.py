"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "in_flight": "cyan",
    "completed": "green",
    "failed_permanent": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _truncate(text: str | None, length: int = 50) -> str:
    if not text:
        return "—"
    return text[:length] + "..." if len(text) > length else text


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta", no_wrap=True)
    table.add_column("Target", justify="left")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Last Error", justify="left", style="dim")

    for job in jobs:
        table.add_row(
            str(job.get("id", "")),
            job.get("type", ""),
            job.get("target", ""),
            _status(job.get("status", "")),
            f"{job.get('attempt_count', 0)}/{job.get('max_attempts', 0)}",
            _truncate(job.get("last_error")),
        )

    return table


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_status = stats.get("by_status", {})
    lines = [
        "📬 [bold blue]Queue Statistics[/bold blue]",
        "",
        f"• Total jobs: [blue]{stats.get('total_jobs', 0)}[/blue]",
        f"• Queue depth: [cyan]{stats.get('queue_depth', 0)}[/cyan]",
        f"• Failed in the last hour: [red]{stats.get('failed_last_hour', 0)}[/red]",
        "",
        "[bold]By status[/bold]",
    ]
    lines += [f"  {_status(name)}: {count}" for name, count in sorted(by_status.items())]
    lines += ["", "[bold]By type[/bold]"]
    lines += [f"  {name}: {count}" for name, count in sorted(stats.get("by_type", {}).items())]

    return Panel("\n".join(lines), title="Job Stats", border_style="green")


def display_job(job: dict[str, Any]):
    """Display a single job with its payload and delivery result"""
    console.print(
        Panel(
            f"• Type: [magenta]{job.get('type')}[/magenta]\n"
            f"• Target: {job.get('target')}\n"
            f"• Status: {_status(job.get('status', ''))}\n"
            f"• Attempts: [yellow]{job.get('attempt_count', 0)}/{job.get('max_attempts', 0)}[/yellow]\n"
            f"• Created: {job.get('created_at')}\n"
            f"• Last attempt: {job.get('last_attempt_at') or '—'}\n"
            f"• Claimed by: {job.get('claimed_by') or '—'}",
            title=f"Job {job.get('id')}",
            border_style="blue",
        )
    )
    console.print(Panel(json.dumps(job.get("payload", {}), indent=2), title="Payload"))

    if job.get("last_error"):
        console.print(Panel(f"[red]{job['last_error']}[/red]", title="Last Error"))
    if job.get("result"):
        console.print(Panel(json.dumps(job["result"], indent=2), title="Delivery Result"))
