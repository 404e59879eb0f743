"""
Meeting domain models touched by the job pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobcore.infra.database import Base, UTCDateTime, utcnow


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EnrichmentStatus(str, Enum):
    PENDING = "pending"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    FAILED = "failed"


class ProcessingDecision(str, Enum):
    PROCESSED = "processed"
    SKIPPED_DURATION = "skipped_duration"
    SKIPPED_CONTENT = "skipped_content"
    SKIPPED_NO_TRANSCRIPT = "skipped_no_transcript"
    MANUAL_OVERRIDE = "manual_override"


class MinutesStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class Meeting(Base):
    """
    A scheduled meeting and the state of its post-meeting pipeline.

    The enrichment columns are the durable form of the enrichment state
    machine: status, attempt number and the due time of the next attempt.
    """

    __tablename__ = "meetings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    organizer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    join_url: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Join link used to match call records"
    )
    online_meeting_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="External meeting id used to fetch artifacts"
    )
    call_record_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=MeetingStatus.SCHEDULED.value
    )
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Enrichment state
    enrichment_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=EnrichmentStatus.PENDING.value,
        comment="pending|enriching|enriched|failed",
    )
    enrichment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_enrichment_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    enrichment_retry_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Due time of the next enrichment attempt"
    )
    enrichment_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Artifacts
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    actual_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transcript_word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Minutes processing gate
    processing_decision: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_decision_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_meetings_enrichment_status", "enrichment_status"),
        Index("ix_meetings_join_url", "join_url"),
    )


class MeetingMinutes(Base):
    __tablename__ = "meeting_minutes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    meeting_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    processing_status: Mapped[str] = mapped_column(
        Text, nullable=False, default=MinutesStatus.PENDING.value
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Structured minutes from the generator"
    )
    approval_status: Mapped[str] = mapped_column(
        Text, nullable=False, default=ApprovalStatus.PENDING_REVIEW.value
    )
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    email_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    archive_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ChatConversation(Base):
    """A chat conversation registered to receive minutes notifications."""

    __tablename__ = "chat_conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    service_url: Mapped[str] = mapped_column(Text, nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    conversation_type: Mapped[str] = mapped_column(
        Text, nullable=False, default="personal", comment="personal|groupChat|channel"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def destination_reference(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "service_url": self.service_url,
            "tenant_id": self.tenant_id,
            "conversation_type": self.conversation_type,
        }
