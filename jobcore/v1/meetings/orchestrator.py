"""
Meeting lifecycle orchestration.

Each step runs as a job and enqueues the next one:

1. call record received -> enrichment
2. enrichment complete -> minutes generation
3. minutes approved -> email, archive upload and chat notifications
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings
from jobcore.infra.database import utcnow
from jobcore.v1.core.exceptions import ConflictError, NotFoundError
from jobcore.v1.infra.jobs.errors import PermanentJobError
from jobcore.v1.infra.jobs.models import JobType
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.infra.outbox.service import OutboxService
from jobcore.v1.meetings.enrichment import EnrichmentService
from jobcore.v1.meetings.integrations import ArchiveUploader, EmailSender, MinutesGenerator
from jobcore.v1.meetings.models import (
    ApprovalStatus,
    ChatConversation,
    Meeting,
    MeetingMinutes,
    MeetingStatus,
    MinutesStatus,
)

logger = logging.getLogger(__name__)

MINUTES_NOTIFICATION = "minutes_processed"


def send_email_key(minutes_id: UUID | str) -> str:
    return f"send_email:{minutes_id}"


def upload_archive_key(minutes_id: UUID | str) -> str:
    return f"upload_archive:{minutes_id}"


class MeetingOrchestrator:
    """Implements the meeting pipeline steps run by the job handlers."""

    def __init__(
        self,
        settings: Settings,
        queue: JobQueue,
        outbox: OutboxService,
        enrichment: EnrichmentService,
        generator: MinutesGenerator,
        email: EmailSender,
        archive: ArchiveUploader,
    ):
        self.settings = settings
        self.queue = queue
        self.outbox = outbox
        self.enrichment = enrichment
        self.generator = generator
        self.email = email
        self.archive = archive

    async def process_call_record(
        self, session: AsyncSession, payload: dict[str, Any], now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Match a call record to a scheduled meeting by join URL.

        Unmatched records (ad-hoc calls) are logged and completed, not failed.
        """
        now = now or utcnow()
        call_record_id = payload.get("call_record_id")
        if not call_record_id:
            raise PermanentJobError("call_record_id required in payload")

        join_url = payload.get("join_url")
        meeting = None
        if join_url:
            result = await session.execute(
                select(Meeting).where(Meeting.join_url == join_url).limit(1)
            )
            meeting = result.scalar_one_or_none()

        if meeting is None:
            logger.info(
                "No meeting matches call record",
                extra={"call_record_id": call_record_id, "join_url": join_url},
            )
            return {"status": "unmatched", "call_record_id": call_record_id}

        meeting_id = meeting.id
        online_meeting_id = meeting.online_meeting_id
        meeting.call_record_id = call_record_id
        meeting.status = MeetingStatus.COMPLETED.value
        if payload.get("organizer_id") and not meeting.organizer_id:
            meeting.organizer_id = payload["organizer_id"]
        meeting.updated_at = now
        await session.commit()

        if online_meeting_id:
            await self.enrichment.enqueue_meeting_enrichment(
                session, meeting_id, online_meeting_id, now
            )

        logger.info(
            "Call record matched to meeting",
            extra={"call_record_id": call_record_id, "meeting_id": str(meeting_id)},
        )
        return {"status": "matched", "meeting_id": str(meeting_id)}

    async def generate_minutes(
        self, session: AsyncSession, meeting_id: UUID, now: datetime | None = None
    ) -> dict[str, Any]:
        now = now or utcnow()
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise PermanentJobError(f"Meeting not found: {meeting_id}")

        minutes = await self._get_minutes_for_meeting(session, meeting_id)
        if minutes is None:
            minutes = MeetingMinutes(
                id=uuid4(),
                meeting_id=meeting_id,
                processing_status=MinutesStatus.PENDING.value,
                approval_status=ApprovalStatus.PENDING_REVIEW.value,
                created_at=now,
                updated_at=now,
            )
            session.add(minutes)
        elif minutes.processing_status == MinutesStatus.COMPLETED.value:
            return {"status": "skipped", "reason": "minutes_exist", "minutes_id": str(minutes.id)}
        minutes_id = minutes.id
        request = {
            "meeting_id": str(meeting_id),
            "title": meeting.title,
            "transcript": meeting.transcript_content,
            "duration_seconds": meeting.actual_duration_seconds,
        }
        await session.commit()
        try:
            generated = await self.generator.generate(request)
        except Exception:
            await session.rollback()
            await session.execute(
                update(MeetingMinutes)
                .where(MeetingMinutes.id == minutes_id)
                .values(processing_status=MinutesStatus.FAILED.value, updated_at=now)
            )
            await session.commit()
            raise

        minutes = await session.get(MeetingMinutes, minutes_id, populate_existing=True)
        minutes.processing_status = MinutesStatus.COMPLETED.value
        minutes.summary = generated.get("summary")
        minutes.content = generated.get("content")
        minutes.updated_at = now

        staged = 0
        if minutes.approval_status == ApprovalStatus.APPROVED.value:
            staged = await self._stage_chat_notifications(session, meeting, minutes, now)
        await session.commit()

        logger.info(
            "Minutes generated",
            extra={"meeting_id": str(meeting_id), "minutes_id": str(minutes_id)},
        )
        return {"status": "completed", "minutes_id": str(minutes_id), "notifications": staged}

    async def send_email(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        minutes_id: UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or utcnow()
        meeting, minutes = await self._load_approved(session, meeting_id, minutes_id)
        if minutes.email_sent_at is not None:
            return {"status": "skipped", "reason": "already_sent"}

        await self.email.send_minutes(self._minutes_document(meeting, minutes))

        await session.execute(
            update(MeetingMinutes)
            .where(MeetingMinutes.id == minutes_id)
            .values(email_sent_at=now, updated_at=now)
        )
        await session.commit()
        logger.info("Minutes emailed", extra={"minutes_id": str(minutes_id)})
        return {"status": "sent", "minutes_id": str(minutes_id)}

    async def upload_archive(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        minutes_id: UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or utcnow()
        meeting, minutes = await self._load_approved(session, meeting_id, minutes_id)
        if minutes.archive_url:
            return {"status": "skipped", "reason": "already_archived", "url": minutes.archive_url}

        url = await self.archive.upload(self._minutes_document(meeting, minutes))

        await session.execute(
            update(MeetingMinutes)
            .where(MeetingMinutes.id == minutes_id)
            .values(archive_url=url, updated_at=now)
        )
        await session.commit()
        logger.info("Minutes archived", extra={"minutes_id": str(minutes_id), "url": url})
        return {"status": "uploaded", "url": url}

    async def trigger_approval_workflow(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        minutes_id: UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Approve minutes and fan out distribution in one transaction.

        Email and archive jobs are enqueued per the distribution toggles; chat
        notifications are staged in the outbox for every registered
        conversation.
        """
        now = now or utcnow()
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        minutes = await session.get(MeetingMinutes, minutes_id, populate_existing=True)
        if meeting is None or minutes is None or minutes.meeting_id != meeting_id:
            raise NotFoundError(f"Minutes {minutes_id} not found for meeting {meeting_id}")
        if minutes.processing_status != MinutesStatus.COMPLETED.value:
            raise ConflictError(
                "Minutes are not ready for approval",
                details={"processing_status": minutes.processing_status},
            )

        minutes.approval_status = ApprovalStatus.APPROVED.value
        minutes.approved_at = minutes.approved_at or now
        minutes.updated_at = now

        payload = {"meeting_id": str(meeting_id), "minutes_id": str(minutes_id)}
        enqueued: list[str] = []
        if self.settings.enable_email_distribution:
            await self.queue.enqueue(
                session, JobType.SEND_EMAIL, send_email_key(minutes_id), payload,
                scheduled_for=now, commit=False,
            )
            enqueued.append(JobType.SEND_EMAIL.value)
        if self.settings.enable_archive_upload:
            await self.queue.enqueue(
                session, JobType.UPLOAD_ARCHIVE, upload_archive_key(minutes_id), payload,
                scheduled_for=now, commit=False,
            )
            enqueued.append(JobType.UPLOAD_ARCHIVE.value)

        staged = await self._stage_chat_notifications(session, meeting, minutes, now)
        await session.commit()

        logger.info(
            "Approval workflow triggered",
            extra={
                "meeting_id": str(meeting_id),
                "minutes_id": str(minutes_id),
                "jobs": enqueued,
                "notifications": staged,
            },
        )
        return {"jobs": enqueued, "notifications": staged}

    async def trigger_meeting_workflow(
        self, session: AsyncSession, meeting_id: UUID, now: datetime | None = None
    ) -> UUID | None:
        """Start the pipeline for a meeting that has ended."""
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        if not meeting.online_meeting_id:
            logger.warning(
                "Meeting has no online meeting id, enrichment not started",
                extra={"meeting_id": str(meeting_id)},
            )
            return None
        return await self.enrichment.enqueue_meeting_enrichment(
            session, meeting_id, meeting.online_meeting_id, now
        )

    async def _get_minutes_for_meeting(
        self, session: AsyncSession, meeting_id: UUID
    ) -> MeetingMinutes | None:
        result = await session.execute(
            select(MeetingMinutes)
            .where(MeetingMinutes.meeting_id == meeting_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_approved(
        self, session: AsyncSession, meeting_id: UUID, minutes_id: UUID
    ) -> tuple[Meeting, MeetingMinutes]:
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise PermanentJobError(f"Meeting not found: {meeting_id}")
        minutes = await session.get(MeetingMinutes, minutes_id, populate_existing=True)
        if minutes is None:
            raise PermanentJobError(f"Minutes not found: {minutes_id}")
        if minutes.approval_status != ApprovalStatus.APPROVED.value:
            raise PermanentJobError(f"Minutes {minutes_id} are not approved")
        return meeting, minutes

    async def _stage_chat_notifications(
        self,
        session: AsyncSession,
        meeting: Meeting,
        minutes: MeetingMinutes,
        now: datetime,
    ) -> int:
        """Stage one notification per registered conversation (caller commits)."""
        if not self.settings.enable_chat_notifications:
            return 0

        result = await session.execute(select(ChatConversation))
        staged = 0
        for conversation in result.scalars().all():
            audit_id = await self.outbox.stage(
                session,
                correlation_entity=str(minutes.id),
                message_type=MINUTES_NOTIFICATION,
                payload={
                    "meeting_id": str(meeting.id),
                    "minutes_id": str(minutes.id),
                    "title": meeting.title,
                    "summary": minutes.summary,
                },
                destination_reference=conversation.destination_reference(),
                commit=False,
                now=now,
            )
            if audit_id is not None:
                staged += 1
        return staged

    @staticmethod
    def _minutes_document(meeting: Meeting, minutes: MeetingMinutes) -> dict[str, Any]:
        return {
            "meeting_id": str(meeting.id),
            "minutes_id": str(minutes.id),
            "title": meeting.title,
            "summary": minutes.summary,
            "content": minutes.content,
        }
