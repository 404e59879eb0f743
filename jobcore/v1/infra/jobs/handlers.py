"""
Job handlers for the meeting pipeline.

Each handler implements the JobHandler protocol and is registered in the
job registry under its JobType value. Handlers validate the payload, then
delegate to the meeting services; they may be invoked several times for
the same job, so each run starts from what is in the database.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.v1.infra.jobs.errors import PermanentJobError
from jobcore.v1.infra.jobs.router import JobContext
from jobcore.v1.meetings.enrichment import EnrichmentService
from jobcore.v1.meetings.orchestrator import MeetingOrchestrator


def _require_uuid(payload: dict[str, Any], field: str) -> UUID:
    value = payload.get(field)
    if not value:
        raise PermanentJobError(f"{field} is required in payload")
    try:
        return UUID(str(value))
    except ValueError:
        raise PermanentJobError(f"Invalid {field} format: {value}") from None


class ProcessCallRecordHandler:
    """
    Matches a call record notification to its meeting.

    Payload expected:
    {
        "call_record_id": "external-id",
        "join_url": "https://...",      # optional
        "organizer_id": "external-id"   # optional
    }
    """

    def __init__(self, orchestrator: MeetingOrchestrator):
        self.orchestrator = orchestrator

    async def handle(
        self, session: AsyncSession, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self.orchestrator.process_call_record(
            session, payload, now=context.started_at
        )


class EnrichMeetingHandler:
    """
    Runs one enrichment attempt.

    Payload expected:
    {
        "meeting_id": "uuid-string",
        "online_meeting_id": "external-id"
    }
    """

    def __init__(self, enrichment: EnrichmentService):
        self.enrichment = enrichment
        self.backoff_policy = enrichment.backoff
        # run_attempt bounds the artifact fetch itself
        self.timeout_s = None

    async def handle(
        self, session: AsyncSession, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        meeting_id = _require_uuid(payload, "meeting_id")
        return await self.enrichment.run_attempt(
            session,
            meeting_id,
            attempt=context.attempt,
            max_attempts=context.max_retries,
            now=context.started_at,
        )


class GenerateMinutesHandler:
    """
    Generates minutes for an enriched meeting.

    Payload expected:
    {
        "meeting_id": "uuid-string"
    }
    """

    def __init__(self, orchestrator: MeetingOrchestrator):
        self.orchestrator = orchestrator

    async def handle(
        self, session: AsyncSession, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        meeting_id = _require_uuid(payload, "meeting_id")
        return await self.orchestrator.generate_minutes(
            session, meeting_id, now=context.started_at
        )


class SendEmailHandler:
    """Emails approved minutes. Payload: ``meeting_id`` and ``minutes_id``."""

    def __init__(self, orchestrator: MeetingOrchestrator):
        self.orchestrator = orchestrator

    async def handle(
        self, session: AsyncSession, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self.orchestrator.send_email(
            session,
            _require_uuid(payload, "meeting_id"),
            _require_uuid(payload, "minutes_id"),
            now=context.started_at,
        )


class UploadArchiveHandler:
    """Uploads approved minutes to the archive. Payload: ``meeting_id`` and ``minutes_id``."""

    def __init__(self, orchestrator: MeetingOrchestrator):
        self.orchestrator = orchestrator

    async def handle(
        self, session: AsyncSession, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self.orchestrator.upload_archive(
            session,
            _require_uuid(payload, "meeting_id"),
            _require_uuid(payload, "minutes_id"),
            now=context.started_at,
        )
