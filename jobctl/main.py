"""jobctl - operator CLI for the meeting job core"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client import JobCoreClient
from .commands import enrichment, jobs, outbox, worker
from .utils.api import api_url
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="jobctl",
    help="⚙️ Job core - durable meeting minutes pipeline",
    rich_markup_mode="rich",
)

app.add_typer(worker.app, name="worker")
app.add_typer(jobs.app, name="jobs")
app.add_typer(outbox.app, name="outbox")
app.add_typer(enrichment.app, name="enrichment")


@app.command()
def status():
    """📊 Check API connectivity and worker lease"""
    base_url = api_url()
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobCoreClient(base_url) as client:
            health = client.health_check()
            worker_info = health.get("worker") or {}

            console.print(
                Panel(
                    f"🚀 [green]Connected[/green]\n\n"
                    f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
                    f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
                    f"• Lease holder: [magenta]{worker_info.get('lease_holder') or '—'}[/magenta]\n"
                    f"• Queue depth: {worker_info.get('queue_depth', 0)}\n"
                    f"• Dead letters: {worker_info.get('dead_letter_count', 0)}",
                    title="System Status",
                    border_style="green",
                )
            )

    except Exception as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the job core API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"Point jobctl elsewhere with [cyan]JOBCTL_API_URL[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None


if __name__ == "__main__":
    app()
