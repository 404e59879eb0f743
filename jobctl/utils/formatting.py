"""Rich formatting helpers for jobctl output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "cyan",
    "processing": "yellow",
    "completed": "green",
    "failed": "magenta",
    "dead_letter": "red",
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


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create a table of job counts per status"""
    table = Table(title="Job Queue", box=box.ROUNDED)
    table.add_column("Status", justify="left")
    table.add_column("Jobs", justify="right", style="bold")

    for status, style in STATUS_STYLES.items():
        table.add_row(f"[{style}]{status}[/{style}]", str(stats.get(status, 0)))

    table.add_section()
    table.add_row("queue depth", str(stats.get("queue_depth", 0)))
    return table


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center")
    table.add_column("Scheduled", justify="left", style="yellow")
    table.add_column("Last Error", justify="left", style="white")

    for job in jobs:
        status = job.get("status", "")
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(job.get("id", ""))[:8],
            job.get("job_type", ""),
            f"[{style}]{status}[/{style}]",
            f"{job.get('attempt_count', 0)}/{job.get('max_retries', 0)}",
            job.get("scheduled_for", "—"),
            (job.get("last_error") or "—")[:60],
        )

    return table


def create_outbox_panel(status: dict[str, Any]) -> Panel:
    """Create formatted panel for outbox status"""
    content = f"""
📬 [bold blue]Pending deliveries[/bold blue]

• Pending: [cyan]{status.get("pending", 0)}[/cyan]
• Due now: [yellow]{status.get("due", 0)}[/yellow]
• Retrying: [magenta]{status.get("retrying", 0)}[/magenta]
• Oldest pending: {status.get("oldest_pending_at") or "—"}

🧾 [bold blue]Audit[/bold blue]

• Staged: [cyan]{status.get("staged", 0)}[/cyan]
• Sent: [green]{status.get("sent", 0)}[/green]
• Failed: [red]{status.get("failed", 0)}[/red]
"""

    return Panel(content, title="Outbox", border_style="blue")
