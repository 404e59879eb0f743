"""Worker Commands - run the lease-holding job worker"""

import asyncio

import typer

from jobcore.config.logging import setup_logging
from jobcore.config.settings import settings
from jobcore.v1.infra.jobs.worker import run_worker

from ..utils.formatting import print_error, print_info, print_success

app = typer.Typer(name="worker", help="Job worker commands")


@app.command("run")
def run(
    instance_id: str | None = typer.Option(
        None, "--instance-id", help="Instance identity used for the lease"
    ),
):
    """🚀 Run the job worker until SIGTERM or lease loss"""
    if instance_id:
        settings.instance_id = instance_id

    setup_logging()
    print_info(f"Starting worker {settings.instance_id} for role {settings.worker_role}")

    worker = asyncio.run(run_worker(settings))

    if worker.lease_lost:
        print_error("Worker stopped after losing its lease")
        raise typer.Exit(1)

    print_success("Worker stopped")
