"""Jobs Commands - Inspect and operate the notification queue"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import NotifierClient, NotifierClientError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    display_job,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Notification job inspection and replay")


@app.command("list")
def list_jobs(
    status: list[str] = typer.Option(None, "--status", "-s", help="Filter by status (repeatable)"),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs, newest first"""
    try:
        with NotifierClient(config.get("api.base_url")) as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)
    except NotifierClientError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("total", len(jobs))

    if not jobs:
        console.print(
            Panel(
                "📭 [yellow]No jobs found![/yellow]\n\n"
                f"• Status: {', '.join(status) if status else 'any'}\n"
                f"• Type: {type or 'any'}",
                title="Empty Results",
                border_style="yellow",
            )
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")

    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("failed")
def list_failed(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of jobs to show"),
):
    """🚨 List jobs that exhausted their attempts"""
    list_jobs(status=["failed_permanent"], type=None, limit=limit, offset=0)


@app.command("show")
def show_job(job_id: int = typer.Argument(..., help="Job ID to show")):
    """🔍 Show a job with its payload, error and delivery result"""
    try:
        with NotifierClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
    except NotifierClientError as e:
        print_error(f"Failed to load job {job_id}: {e}")
        raise typer.Exit(1) from None

    display_job(job)


@app.command("stats")
def stats():
    """📊 Show queue statistics"""
    try:
        with NotifierClient(config.get("api.base_url")) as client:
            data = client.job_stats()
    except NotifierClientError as e:
        print_error(f"Failed to load stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(data))


@app.command("replay")
def replay(job_id: int = typer.Argument(..., help="Failed job ID to re-queue")):
    """🔁 Re-queue a permanently failed job"""
    try:
        with NotifierClient(config.get("api.base_url")) as client:
            data = client.replay_job(job_id)
    except NotifierClientError as e:
        print_error(f"Failed to replay job {job_id}: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} re-queued as job {data.get('replay_job_id')}")


@app.command("cleanup")
def cleanup():
    """🧹 Delete terminal jobs past the retention window"""
    try:
        with NotifierClient(config.get("api.base_url")) as client:
            data = client.cleanup_jobs()
    except NotifierClientError as e:
        print_error(f"Cleanup failed: {e}")
        raise typer.Exit(1) from None

    print_info(
        f"Deleted {data.get('deleted_count', 0)} jobs older than "
        f"{data.get('retention_days')} days"
    )
