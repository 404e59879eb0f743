"""
Meeting pipeline admin endpoints: manual re-enrichment, forced processing
and minutes approval.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.infra.database import get_session
from jobcore.v1.core.exceptions import create_success_response
from jobcore.v1.infra.jobs.registry_init import MeetingPipeline, get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.post("/{meeting_id}/enrich", response_model=dict)
async def enrich_meeting(
    meeting_id: UUID,
    session: AsyncSession = Depends(get_session),
    pipeline: MeetingPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Start enrichment again for a meeting."""

    job_id = await pipeline.enrichment.manually_enrich_meeting(session, meeting_id)
    logger.info(
        "Manual enrichment requested",
        extra={"meeting_id": str(meeting_id), "job_id": str(job_id) if job_id else None},
    )
    return create_success_response(
        data={"meeting_id": str(meeting_id), "job_id": str(job_id) if job_id else None}
    )




class ForceProcessRequest(BaseModel):
    admin_id: str = Field(..., min_length=1, description="Admin forcing the override")
    reason: str = Field(..., min_length=1, max_length=500, description="Why the gate is bypassed")


@router.post("/{meeting_id}/force-process", response_model=dict)
async def force_process_meeting(
    meeting_id: UUID,
    body: ForceProcessRequest,
    session: AsyncSession = Depends(get_session),
    pipeline: MeetingPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Generate minutes for a meeting the validation gate skipped."""

    job_id = await pipeline.enrichment.force_process_meeting(
        session, meeting_id, body.admin_id, body.reason
    )
    return create_success_response(
        data={
            "meeting_id": str(meeting_id),
            "job_id": str(job_id) if job_id else None,
            "processing_decision": "manual_override",
        }
    )


@router.post("/{meeting_id}/minutes/{minutes_id}/approve", response_model=dict)
async def approve_minutes(
    meeting_id: UUID,
    minutes_id: UUID,
    session: AsyncSession = Depends(get_session),
    pipeline: MeetingPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Approve minutes and start distribution."""

    result = await pipeline.orchestrator.trigger_approval_workflow(
        session, meeting_id, minutes_id
    )
    return create_success_response(data=result)
