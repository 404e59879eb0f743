"""
Job management API endpoints.

Admin endpoints for enqueueing, inspecting and re-admitting jobs.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings, SettingsDep
from jobcore.infra.database import get_session
from jobcore.v1.core.exceptions import create_success_response
from jobcore.v1.infra.jobs.models import JobStatus
from jobcore.v1.infra.jobs.schemas import (
    JobEnqueueRequest,
    JobEnqueueResponse,
    JobListResponse,
    JobResponse,
    JobRetryResponse,
)
from jobcore.v1.infra.jobs.service import JobQueue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a job; a repeated idempotency key is reported, not rejected."""

    queue = JobQueue(settings)
    try:
        job_id = await queue.enqueue(
            session,
            job_request.job_type,
            job_request.idempotency_key,
            job_request.payload,
            max_retries=job_request.max_retries,
            scheduled_for=job_request.scheduled_for,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "Job enqueued via API",
        extra={
            "job_id": str(job_id) if job_id else None,
            "type": job_request.job_type.value,
            "already_queued": job_id is None,
        },
    )

    response = JobEnqueueResponse(job_id=job_id, already_queued=job_id is None)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(default=None, description="Filter by status"),
    job_type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""

    queue = JobQueue(settings)
    jobs, total = await queue.list_jobs(
        session, statuses=status, job_type=job_type, limit=limit, offset=offset
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_job_stats(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Job counts per status."""

    stats = await JobQueue(settings).get_stats(session)
    data = stats.model_dump()
    data["queue_depth"] = stats.queue_depth
    return create_success_response(data=data)


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await JobQueue(settings).get_job(session, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return create_success_response(data=JobResponse.model_validate(job).model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Re-admit a failed or dead-lettered job."""

    success = await JobQueue(settings).retry(session, job_id)
    if not success:
        raise HTTPException(
            status_code=404, detail="Job not found or not eligible for retry"
        )

    logger.info("Job retried via API", extra={"job_id": str(job_id)})

    response = JobRetryResponse(job_id=job_id, status=JobStatus.PENDING)
    return create_success_response(data=response.model_dump(mode="json"))
