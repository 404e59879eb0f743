"""Jobs Commands - inspect and manage the durable job queue"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from jobcore.config.settings import settings
from jobcore.v1.infra.jobs.service import JobQueue

from ..client import JobCoreClient, JobCoreError
from ..utils.api import api_url
from ..utils.formatting import (
    create_jobs_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from ..utils.runtime import run_db

console = Console()
app = typer.Typer(name="jobs", help="Job queue commands")


@app.command("stats")
def show_stats():
    """📊 Show job counts per status"""
    try:
        with JobCoreClient(api_url()) as client:
            stats = client.get_stats()
            console.print(create_stats_table(stats))

            if stats.get("dead_letter", 0):
                print_warning(
                    f"{stats['dead_letter']} dead-lettered job(s) need attention. "
                    "Retry them with: jobctl jobs retry <job_id>"
                )

    except JobCoreError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum jobs to show"),
    offset: int = typer.Option(0, "--offset", help="Results offset"),
):
    """📋 List jobs"""
    try:
        with JobCoreClient(api_url()) as client:
            data = client.list_jobs(
                status=status, job_type=job_type, limit=limit, offset=offset
            )
            jobs = data.get("jobs", [])

            if not jobs:
                print_info("No jobs found")
                return

            console.print(create_jobs_table(jobs))
            console.print(f"\nShowing {len(jobs)} of {data.get('total', len(jobs))} jobs")

    except JobCoreError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show one job"""
    try:
        with JobCoreClient(api_url()) as client:
            job = client.get_job(job_id)
            console.print(
                Panel(
                    json.dumps(job, indent=2),
                    title=f"Job {job_id[:8]}",
                    border_style="cyan",
                )
            )

    except JobCoreError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Failed or dead-lettered job ID")):
    """🔁 Re-admit a failed or dead-lettered job"""
    try:
        with JobCoreClient(api_url()) as client:
            client.retry_job(job_id)
            print_success(f"Job {job_id} is pending again")

    except JobCoreError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None


@app.command("enqueue")
def enqueue_job(
    job_type: str = typer.Argument(..., help="Job type"),
    idempotency_key: str = typer.Argument(..., help="Idempotency key"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    max_retries: int | None = typer.Option(None, "--max-retries", help="Attempt budget"),
):
    """➕ Enqueue a job"""
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON payload: {e}")
        raise typer.Exit(1) from None

    try:
        with JobCoreClient(api_url()) as client:
            result = client.enqueue(job_type, idempotency_key, body, max_retries)

            if result.get("already_queued"):
                print_warning(f"A job with key {idempotency_key} is already queued")
            else:
                print_success(f"Enqueued job {result.get('job_id')}")

    except JobCoreError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None


@app.command("recover")
def recover_stuck():
    """🩹 Return stuck processing jobs to the queue"""
    queue = JobQueue(settings)
    recovered = run_db(queue.recover_stuck)

    if recovered:
        print_success(f"Recovered {recovered} stuck job(s)")
    else:
        print_info("No stuck jobs found")


@app.command("cleanup")
def cleanup_completed():
    """🧹 Delete completed jobs past the retention window"""
    queue = JobQueue(settings)
    deleted = run_db(queue.cleanup_completed)
    print_success(f"Deleted {deleted} completed job(s)")
