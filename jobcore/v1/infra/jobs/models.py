"""
Durable queue models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobcore.infra.database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


# Statuses a worker may claim
CLAIMABLE_STATUSES = (JobStatus.PENDING.value, JobStatus.FAILED.value)


class JobType(str, Enum):
    """Closed set of job types understood by the router."""

    PROCESS_CALL_RECORD = "process_call_record"
    ENRICH_MEETING = "enrich_meeting"
    GENERATE_MINUTES = "generate_minutes"
    SEND_EMAIL = "send_email"
    UPLOAD_ARCHIVE = "upload_archive"


class Job(Base):
    """
    A unit of durable background work.

    ``idempotency_key`` is unique across all statuses: a second enqueue for
    the same logical work is a no-op even after the first job finished.
    """

    __tablename__ = "job_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    idempotency_key: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="Deterministic key of the logical work"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|processing|completed|failed|dead_letter",
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Attempts started so far"
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Attempts allowed before dead-letter"
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest time to run"
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When the last attempt was claimed"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Completion time"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'dead_letter')",
            name="job_queue_status_check",
        ),
        Index("ix_job_queue_status_scheduled_for", "status", "scheduled_for"),
    )

    def is_terminal(self) -> bool:
        """Check if the job reached a state the worker never leaves on its own."""
        return self.status in (JobStatus.COMPLETED.value, JobStatus.DEAD_LETTER.value)

    def is_stuck(self, threshold_s: int, now: datetime) -> bool:
        """Check if a processing job has outlived the stuck threshold."""
        if self.status != JobStatus.PROCESSING.value or not self.last_attempt_at:
            return False
        return (now - self.last_attempt_at).total_seconds() > threshold_s
