"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobcore.v1.infra.jobs.models import JobStatus, JobType


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    idempotency_key: str
    payload: dict[str, Any]
    status: str
    attempt_count: int
    max_retries: int
    scheduled_for: datetime
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class QueueStats(BaseModel):
    """Job counts per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0

    @property
    def queue_depth(self) -> int:
        return self.pending + self.processing + self.failed


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    job_type: JobType = Field(..., description="Job type")
    idempotency_key: str = Field(
        ..., min_length=1, description="Deterministic key built from domain identifiers"
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    max_retries: int | None = Field(default=None, ge=1, le=20, description="Attempt budget")
    scheduled_for: datetime | None = Field(default=None, description="Earliest run time")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID | None
    already_queued: bool = Field(
        default=False, description="True when the idempotency key already existed"
    )


class JobRetryResponse(BaseModel):
    job_id: UUID
    status: JobStatus
