"""Notifier CLI - Main Entry Point"""

import asyncio

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .client.endpoints import NotifierClient, NotifierClientError
from .commands import config, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info, print_success

console = Console()

app = typer.Typer(
    name="notifier",
    help="📬 Notifier - asynchronous notification delivery",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


def _load_settings():
    # Imported lazily so API-only commands work without worker configuration
    try:
        from notifier.config.settings import Settings

        return Settings()
    except (ValidationError, ValueError) as e:
        print_error(f"Invalid configuration: {escape(str(e))}")
        raise typer.Exit(1) from None


@app.command()
def worker(
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", help="Parallel job slots (overrides JOB_CONCURRENCY)"
    ),
    shutdown_timeout: float = typer.Option(
        30.0, "--shutdown-timeout", help="Seconds to wait for in-flight jobs on shutdown"
    ),
):
    """⚙️ Run a notification worker until interrupted"""
    settings = _load_settings()
    if concurrency is not None:
        if concurrency < 1:
            print_error("Concurrency must be at least 1")
            raise typer.Exit(1)
        settings = settings.model_copy(update={"job_concurrency": concurrency})

    from .commands.worker import TransportUnavailableError, run_worker

    print_info(
        f"Starting worker: provider={settings.email_provider.value}, "
        f"concurrency={settings.job_concurrency}"
    )
    try:
        asyncio.run(run_worker(settings, shutdown_timeout_s=shutdown_timeout))
    except TransportUnavailableError as e:
        print_error(f"Email transport check failed: {e}")
        raise typer.Exit(1) from None


@app.command("init-db")
def init_db():
    """🗄️ Create the job tables"""
    settings = _load_settings()

    from .commands.worker import init_database

    asyncio.run(init_database(settings))
    print_success("Database schema is ready")


@app.command()
def status():
    """📊 Check API status and queue health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with NotifierClient(base_url) as client:
            health = client.health_check()
    except NotifierClientError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the notifier API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]notifier config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Provider: [magenta]{health.get('email_provider', 'unknown')}[/magenta]\n"
            f"• Queue depth: [cyan]{queue.get('queue_depth', '?')}[/cyan]\n"
            f"• Active workers: [cyan]{queue.get('active_workers', '?')}[/cyan]\n"
            f"• Expired leases: [yellow]{queue.get('expired_leases', '?')}[/yellow]",
            title="System Status",
            border_style="green",
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    📬 Notifier CLI

    Run delivery workers and inspect, replay or clean up notification jobs.
    """
    if version:
        from . import __version__

        console.print(f"Notifier CLI v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
