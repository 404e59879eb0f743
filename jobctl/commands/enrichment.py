"""Enrichment Commands - recover and re-run meeting enrichment"""

import typer
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import settings
from jobcore.v1.infra.jobs.registry_init import build_pipeline

from ..client import JobCoreClient, JobCoreError
from ..utils.api import api_url
from ..utils.formatting import print_error, print_info, print_success
from ..utils.runtime import run_db

app = typer.Typer(name="enrichment", help="Meeting enrichment commands")


@app.command("sweep")
def sweep():
    """🧭 Re-enqueue enrichment for meetings that lost their job"""

    async def _sweep(session: AsyncSession) -> int:
        pipeline = build_pipeline(settings)
        try:
            return await pipeline.enrichment.sweep_stuck(session)
        finally:
            await pipeline.aclose()

    enqueued = run_db(_sweep)

    if enqueued:
        print_success(f"Re-enqueued enrichment for {enqueued} meeting(s)")
    else:
        print_info("No stuck meetings found")


@app.command("run")
def enrich(meeting_id: str = typer.Argument(..., help="Meeting ID")):
    """🔄 Start enrichment again for one meeting"""
    try:
        with JobCoreClient(api_url()) as client:
            result = client.enrich_meeting(meeting_id)
            print_success(f"Enrichment job {result.get('job_id')} queued")

    except JobCoreError as e:
        print_error(f"Failed to enrich meeting: {e}")
        raise typer.Exit(1) from None


@app.command("force")
def force(
    meeting_id: str = typer.Argument(..., help="Meeting ID"),
    admin: str = typer.Option(..., "--admin", "-a", help="Admin ID recorded on the override"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the meeting should be processed"),
):
    """⚠️ Generate minutes for a meeting the validation gate skipped"""
    try:
        with JobCoreClient(api_url()) as client:
            result = client.force_process_meeting(meeting_id, admin, reason)
            if result.get("job_id"):
                print_success(f"Minutes generation job {result['job_id']} queued")
            else:
                print_info("Minutes generation was already queued")

    except JobCoreError as e:
        print_error(f"Failed to force processing: {e}")
        raise typer.Exit(1) from None
