"""
Job registry initialization.

Builds the meeting pipeline services and registers one handler per job type
with the job registry.
"""

import logging
from dataclasses import dataclass

from jobcore.config.settings import Settings, SettingsDep
from jobcore.v1.core.registries import JobRegistry, job_registry
from jobcore.v1.infra.jobs.handlers import (
    EnrichMeetingHandler,
    GenerateMinutesHandler,
    ProcessCallRecordHandler,
    SendEmailHandler,
    UploadArchiveHandler,
)
from jobcore.v1.infra.jobs.models import JobType
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.infra.outbox.service import OutboxService
from jobcore.v1.meetings.enrichment import EnrichmentService
from jobcore.v1.meetings.integrations import (
    ArchiveUploader,
    ArtifactClient,
    EmailSender,
    GraphArtifactClient,
    MinutesGenerator,
    ServiceEndpointClient,
)
from jobcore.v1.meetings.orchestrator import MeetingOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class MeetingPipeline:
    queue: JobQueue
    outbox: OutboxService
    enrichment: EnrichmentService
    orchestrator: MeetingOrchestrator

    async def aclose(self) -> None:
        """Close HTTP clients owned by the pipeline's collaborators."""
        collaborators = {
            id(c): c
            for c in (
                self.enrichment.artifacts,
                self.orchestrator.generator,
                self.orchestrator.email,
                self.orchestrator.archive,
            )
        }
        for collaborator in collaborators.values():
            aclose = getattr(collaborator, "aclose", None)
            if aclose is not None:
                await aclose()


def build_pipeline(
    settings: Settings,
    *,
    artifacts: ArtifactClient | None = None,
    generator: MinutesGenerator | None = None,
    email: EmailSender | None = None,
    archive: ArchiveUploader | None = None,
) -> MeetingPipeline:
    """Wire the pipeline services; collaborators default to the HTTP clients."""
    queue = JobQueue(settings)
    outbox = OutboxService(settings)
    enrichment = EnrichmentService(
        settings, queue, artifacts or GraphArtifactClient(settings)
    )

    if generator is None or email is None or archive is None:
        endpoints = ServiceEndpointClient(settings)
        generator = generator or endpoints
        email = email or endpoints
        archive = archive or endpoints

    orchestrator = MeetingOrchestrator(
        settings, queue, outbox, enrichment, generator, email, archive
    )
    return MeetingPipeline(queue, outbox, enrichment, orchestrator)


def register_job_handlers(
    pipeline: MeetingPipeline, registry: JobRegistry | None = None
) -> JobRegistry:
    """Register all job handlers with the job registry."""
    registry = registry or job_registry
    logger.info("Registering job handlers")

    registry.register(
        JobType.PROCESS_CALL_RECORD.value, ProcessCallRecordHandler(pipeline.orchestrator)
    )
    registry.register(JobType.ENRICH_MEETING.value, EnrichMeetingHandler(pipeline.enrichment))
    registry.register(
        JobType.GENERATE_MINUTES.value, GenerateMinutesHandler(pipeline.orchestrator)
    )

    # Distribution
    registry.register(JobType.SEND_EMAIL.value, SendEmailHandler(pipeline.orchestrator))
    registry.register(
        JobType.UPLOAD_ARCHIVE.value, UploadArchiveHandler(pipeline.orchestrator)
    )

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
    return registry


# Pipeline instance shared by the admin API
_pipeline: MeetingPipeline | None = None


def get_pipeline(settings: Settings = SettingsDep) -> MeetingPipeline:
    """Get or create the global pipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(settings)
    return _pipeline


async def close_pipeline() -> None:
    """Close the shared pipeline's HTTP clients on API shutdown."""
    global _pipeline
    if _pipeline is not None:
        await _pipeline.aclose()
        _pipeline = None
