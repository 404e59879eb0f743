"""
Meeting enrichment state machine.

A meeting moves pending -> enriching -> enriched | failed. Every attempt is
a run of the ``enrich_meeting`` job; the meeting row mirrors the attempt
number and the due time of the next attempt so the state survives restarts
and can be rebuilt at any time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, NoReturn
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings
from jobcore.infra.database import utcnow
from jobcore.v1.core.exceptions import ConflictError, NotFoundError, ValidationError
from jobcore.v1.infra.jobs.errors import (
    ErrorKind,
    PermanentJobError,
    RetryLaterError,
    TransientJobError,
    classify_error,
)
from jobcore.v1.infra.jobs.models import JobStatus, JobType
from jobcore.v1.infra.jobs.retry import LadderBackoff
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.meetings.integrations import ArtifactClient, MeetingArtifacts
from jobcore.v1.meetings.models import EnrichmentStatus, Meeting, ProcessingDecision
from jobcore.v1.meetings.validation import (
    ValidationResult,
    calculate_actual_duration,
    count_transcript_words,
    record_manual_override,
    record_processing_decision,
    validate_for_processing,
)

logger = logging.getLogger(__name__)


def enrichment_key(meeting_id: UUID | str) -> str:
    return f"enrich:{meeting_id}"


def generate_minutes_key(meeting_id: UUID | str) -> str:
    return f"generate_minutes:{meeting_id}"


@dataclass(frozen=True)
class EnrichmentTask:
    """In-memory view of a meeting awaiting its next enrichment attempt."""

    meeting_id: UUID
    external_meeting_ref: str
    attempt: int
    retry_at: datetime | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "meeting_id": str(self.meeting_id),
            "online_meeting_id": self.external_meeting_ref,
        }


class EnrichmentService:
    """Drives enrichment attempts and keeps the meeting row in step with them."""

    def __init__(self, settings: Settings, queue: JobQueue, artifacts: ArtifactClient):
        self.settings = settings
        self.queue = queue
        self.artifacts = artifacts
        self.backoff = LadderBackoff.of(settings.enrichment_backoff_minutes)

    async def enqueue_meeting_enrichment(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        online_meeting_id: str,
        now: datetime | None = None,
    ) -> UUID | None:
        """
        Enqueue the meeting's enrichment job and, on first trigger, mark the
        meeting enriching in the same transaction.

        A repeat trigger finds the job key taken and leaves the meeting as it
        is; an enriched meeting is never moved back to enriching.
        """
        now = now or utcnow()
        task = EnrichmentTask(meeting_id, online_meeting_id, attempt=0)
        job_id = await self.queue.enqueue(
            session,
            JobType.ENRICH_MEETING,
            enrichment_key(meeting_id),
            task.payload(),
            max_retries=self.settings.enrichment_max_attempts,
            scheduled_for=now,
            commit=False,
        )
        if job_id is not None:
            await self._mark_enriching(session, meeting_id, now)
        await session.commit()

        logger.info(
            "Meeting enrichment enqueued",
            extra={
                "meeting_id": str(meeting_id),
                "job_id": str(job_id) if job_id else None,
                "already_queued": job_id is None,
            },
        )
        return job_id

    async def _mark_enriching(
        self, session: AsyncSession, meeting_id: UUID, now: datetime
    ) -> None:
        await session.execute(
            update(Meeting)
            .where(
                Meeting.id == meeting_id,
                Meeting.enrichment_status != EnrichmentStatus.ENRICHED.value,
            )
            .values(
                enrichment_status=EnrichmentStatus.ENRICHING.value,
                enrichment_attempts=0,
                last_enrichment_at=now,
                enrichment_retry_at=None,
                enrichment_error=None,
                updated_at=now,
            )
        )

    @property
    def fetch_timeout_s(self) -> float:
        """Artifact fetch bound; never longer than the per-job timeout."""
        timeout = self.settings.artifact_fetch_timeout_s
        if self.settings.job_timeout_s is not None:
            timeout = min(timeout, self.settings.job_timeout_s)
        return timeout

    async def run_attempt(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        attempt: int,
        max_attempts: int,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Run one enrichment attempt for ``meeting_id``.

        Raises:
            RetryLaterError: artifacts not ready or a transient failure, with
                the ladder delay for this attempt
            PermanentJobError: final attempt exhausted or a permanent failure;
                the meeting is left failed with a readable reason
        """
        now = now or utcnow()
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise PermanentJobError(f"Meeting {meeting_id} not found")
        if meeting.enrichment_status == EnrichmentStatus.ENRICHED.value:
            return {"status": "skipped", "reason": "already_enriched"}
        if not meeting.online_meeting_id:
            raise PermanentJobError(f"Meeting {meeting_id} has no online meeting id")

        meeting.enrichment_status = EnrichmentStatus.ENRICHING.value
        meeting.enrichment_attempts = attempt
        meeting.last_enrichment_at = now
        meeting.enrichment_retry_at = None
        meeting.updated_at = now
        online_meeting_id = meeting.online_meeting_id
        organizer_id = meeting.organizer_id
        call_record_id = meeting.call_record_id
        await session.commit()

        logger.info(
            "Enriching meeting",
            extra={"meeting_id": str(meeting_id), "attempt": attempt, "max_attempts": max_attempts},
        )

        timeout = self.fetch_timeout_s
        try:
            try:
                async with asyncio.timeout(timeout):
                    artifacts = await self.artifacts.fetch_artifacts(
                        online_meeting_id, organizer_id, call_record_id
                    )
            except TimeoutError:
                raise TransientJobError(
                    f"Artifact fetch timed out after {timeout:g}s"
                ) from None
            decision = await self._store_artifacts(session, meeting_id, attempt, artifacts, now)
        except Exception as e:
            await self._record_failed_attempt(session, meeting_id, attempt, max_attempts, e, now)

        logger.info(
            "Meeting enriched",
            extra={
                "meeting_id": str(meeting_id),
                "decision": decision.decision.value,
                "reason": decision.reason,
            },
        )
        return {
            "status": "enriched",
            "meeting_id": str(meeting_id),
            "decision": decision.decision.value,
        }

    async def _store_artifacts(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        attempt: int,
        artifacts: MeetingArtifacts,
        now: datetime,
    ) -> ValidationResult:
        """Persist artifacts and the processing decision, enqueue generation if it passed."""
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        duration = calculate_actual_duration(artifacts.call_started_at, artifacts.call_ended_at)
        word_count = count_transcript_words(artifacts.transcript_content)
        decision = validate_for_processing(
            self.settings, duration, word_count, bool(artifacts.transcript_content)
        )

        meeting.recording_url = artifacts.recording_url
        meeting.transcript_url = artifacts.transcript_url
        meeting.transcript_content = artifacts.transcript_content
        meeting.enrichment_status = EnrichmentStatus.ENRICHED.value
        meeting.enrichment_attempts = attempt
        meeting.enrichment_retry_at = None
        meeting.enrichment_error = None
        meeting.updated_at = now
        record_processing_decision(meeting, decision, now)

        if decision.should_process:
            await self.queue.enqueue(
                session,
                JobType.GENERATE_MINUTES,
                generate_minutes_key(meeting_id),
                {"meeting_id": str(meeting_id)},
                scheduled_for=now,
                commit=False,
            )
        await session.commit()
        return decision

    async def _record_failed_attempt(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        attempt: int,
        max_attempts: int,
        error: Exception,
        now: datetime,
    ) -> NoReturn:
        """Persist the failure on the meeting, then raise the error the router understands."""
        await session.rollback()
        permanent = classify_error(error) is ErrorKind.PERMANENT
        reason = str(error) or error.__class__.__name__

        if permanent or attempt >= max_attempts:
            message = (
                f"Enrichment failed after {attempt} attempt(s): {reason}"
                if not permanent
                else f"Enrichment failed permanently: {reason}"
            )
            await session.execute(
                update(Meeting)
                .where(Meeting.id == meeting_id)
                .values(
                    enrichment_status=EnrichmentStatus.FAILED.value,
                    enrichment_retry_at=None,
                    enrichment_error=message,
                    updated_at=now,
                )
            )
            await session.commit()
            logger.error(
                "Meeting enrichment failed",
                extra={"meeting_id": str(meeting_id), "attempt": attempt, "error": reason},
            )
            raise PermanentJobError(message) from error

        delay = self.backoff.delay(attempt)
        await session.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id)
            .values(
                enrichment_retry_at=now + delay,
                enrichment_error=reason,
                updated_at=now,
            )
        )
        await session.commit()
        logger.info(
            "Meeting artifacts not ready, retry scheduled",
            extra={
                "meeting_id": str(meeting_id),
                "attempt": attempt,
                "retry_in_minutes": delay.total_seconds() / 60,
            },
        )
        raise RetryLaterError(reason, retry_after=delay) from error

    async def rebuild_tasks(
        self, session: AsyncSession, now: datetime | None = None
    ) -> list[EnrichmentTask]:
        """Meetings still enriching whose next attempt is due (or never scheduled)."""
        now = now or utcnow()
        result = await session.execute(
            select(Meeting).where(
                Meeting.enrichment_status == EnrichmentStatus.ENRICHING.value,
                or_(
                    Meeting.enrichment_retry_at.is_(None),
                    Meeting.enrichment_retry_at <= now,
                ),
                Meeting.enrichment_attempts < self.settings.enrichment_max_attempts,
                Meeting.online_meeting_id.is_not(None),
            )
        )
        return [
            EnrichmentTask(
                meeting_id=meeting.id,
                external_meeting_ref=meeting.online_meeting_id,
                attempt=meeting.enrichment_attempts,
                retry_at=meeting.enrichment_retry_at,
            )
            for meeting in result.scalars().all()
        ]

    async def sweep_stuck(self, session: AsyncSession, now: datetime | None = None) -> int:
        """
        Re-enqueue enrichment for meetings that lost their job.

        Enqueue is idempotent on ``enrich:<meetingId>``, so meetings whose job
        row still exists are left alone.
        """
        tasks = await self.rebuild_tasks(session, now)
        requeued = 0
        for task in tasks:
            job_id = await self.queue.enqueue(
                session,
                JobType.ENRICH_MEETING,
                enrichment_key(task.meeting_id),
                task.payload(),
                max_retries=self.settings.enrichment_max_attempts,
            )
            if job_id is not None:
                requeued += 1

        if tasks:
            logger.info(
                "Swept stuck enrichments",
                extra={"candidates": len(tasks), "requeued": requeued},
            )
        return requeued

    async def manually_enrich_meeting(
        self, session: AsyncSession, meeting_id: UUID, now: datetime | None = None
    ) -> UUID | None:
        """Start enrichment again, re-admitting a failed or dead-lettered job.

        Enriched meetings are refused; returns None when an attempt is
        already queued or running.
        """
        now = now or utcnow()
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        if not meeting.online_meeting_id:
            raise ValidationError(f"Meeting {meeting_id} has no online meeting id")
        if meeting.enrichment_status == EnrichmentStatus.ENRICHED.value:
            raise ConflictError(
                f"Meeting {meeting_id} is already enriched",
                details={"processing_decision": meeting.processing_decision},
            )

        job_id = await self.enqueue_meeting_enrichment(
            session, meeting_id, meeting.online_meeting_id, now
        )
        if job_id is not None:
            return job_id

        existing = await self.queue.get_job_by_key(session, enrichment_key(meeting_id))
        if existing is None or existing.status not in (
            JobStatus.FAILED.value,
            JobStatus.DEAD_LETTER.value,
        ):
            return None

        # Committed together by the retry below
        await self._mark_enriching(session, meeting_id, now)
        if not await self.queue.retry(session, existing.id, now):
            return None
        logger.info(
            "Meeting enrichment re-admitted",
            extra={"meeting_id": str(meeting_id), "job_id": str(existing.id)},
        )
        return existing.id

    async def force_process_meeting(
        self,
        session: AsyncSession,
        meeting_id: UUID,
        admin_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> UUID | None:
        """
        Generate minutes for a meeting the validation gate skipped.

        Records a ``manual_override`` decision naming the admin and reason,
        then enqueues ``generate_minutes`` in the same transaction. Returns
        the job id, or None if a generation job already exists.
        """
        now = now or utcnow()
        meeting = await session.get(Meeting, meeting_id, populate_existing=True)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        if meeting.processing_decision in (
            ProcessingDecision.PROCESSED.value,
            ProcessingDecision.MANUAL_OVERRIDE.value,
        ):
            raise ConflictError(
                f"Meeting has already been processed ({meeting.processing_decision})"
            )
        if meeting.enrichment_status != EnrichmentStatus.ENRICHED.value:
            raise ConflictError(
                "Meeting must be enriched before processing can be forced",
                details={"enrichment_status": meeting.enrichment_status},
            )

        record_manual_override(meeting, admin_id, reason, now)
        job_id = await self.queue.enqueue(
            session,
            JobType.GENERATE_MINUTES,
            generate_minutes_key(meeting_id),
            {"meeting_id": str(meeting_id)},
            scheduled_for=now,
            commit=False,
        )
        await session.commit()

        logger.warning(
            "Manual override, forcing minutes generation",
            extra={"meeting_id": str(meeting_id), "admin_id": admin_id, "reason": reason},
        )
        return job_id
