"""Outbox Commands - inspect pending chat notifications"""

import typer
from rich.console import Console

from ..client import JobCoreClient, JobCoreError
from ..utils.api import api_url
from ..utils.formatting import create_outbox_panel, print_error, print_warning

console = Console()
app = typer.Typer(name="outbox", help="Notification outbox commands")


@app.command("status")
def show_status():
    """📬 Show pending deliveries and audit outcomes"""
    try:
        with JobCoreClient(api_url()) as client:
            status = client.outbox_status()
            console.print(create_outbox_panel(status))

            if status.get("failed", 0):
                print_warning(f"{status['failed']} notification(s) failed permanently")

    except JobCoreError as e:
        print_error(f"Failed to get outbox status: {e}")
        raise typer.Exit(1) from None
