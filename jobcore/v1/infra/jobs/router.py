"""
Job router: dispatches a claimed job to its registered handler and settles
the outcome in the durable queue.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings
from jobcore.infra.database import utcnow
from jobcore.v1.core.registries import JobRegistry, job_registry
from jobcore.v1.infra.jobs.errors import ErrorKind, RetryLaterError, classify_error
from jobcore.v1.infra.jobs.models import Job, JobStatus, JobType
from jobcore.v1.infra.jobs.service import JobQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobContext:
    """What a handler knows about the job it is running."""

    job_id: UUID
    job_type: str
    idempotency_key: str
    attempt: int
    max_retries: int
    started_at: datetime

    @classmethod
    def from_job(cls, job: Job, started_at: datetime) -> "JobContext":
        return cls(
            job_id=job.id,
            job_type=job.job_type,
            idempotency_key=job.idempotency_key,
            attempt=job.attempt_count,
            max_retries=job.max_retries,
            started_at=started_at,
        )

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_retries


class JobRouter:
    """
    Routes claimed jobs to handlers from the job registry.

    Handler outcomes map onto the queue as follows:
    - return: complete
    - PermanentJobError, permanent HTTP status or unknown job type: dead-letter
    - RetryLaterError: failed, rescheduled at its retry_after
    - anything else (including a timeout): failed per the handler's backoff

    A handler may expose a ``backoff_policy`` attribute to replace the
    queue's default exponential policy.

    A handler that bounds its own external calls sets ``timeout_s = None``
    so it is never cancelled halfway through its own failure bookkeeping.
    """

    def __init__(
        self,
        settings: Settings,
        queue: JobQueue,
        registry: JobRegistry | None = None,
    ):
        self.settings = settings
        self.queue = queue
        self.registry = registry or job_registry

    async def route(
        self, session: AsyncSession, job: Job, now: datetime | None = None
    ) -> JobStatus:
        """Run one claimed job to completion or failure. Never raises for handler errors."""
        context = JobContext.from_job(job, started_at=now or utcnow())
        payload: dict[str, Any] = dict(job.payload or {})

        handler = self._resolve(context.job_type)
        if handler is None:
            return await self.queue.fail(
                session,
                context.job_id,
                f"Unknown job type: {context.job_type}",
                context.attempt,
                context.max_retries,
                permanent=True,
                now=now,
            )

        try:
            result = await self._invoke(handler, session, context, payload)
        except Exception as e:
            await session.rollback()
            return await self._settle_failure(session, handler, context, e, now)

        await self.queue.complete(session, context.job_id, now=now)
        logger.info(
            "Job handler succeeded",
            extra={
                "job_id": str(context.job_id),
                "type": context.job_type,
                "attempt": context.attempt,
                "result": result,
            },
        )
        return JobStatus.COMPLETED

    def _resolve(self, job_type: str):
        try:
            JobType(job_type)
            return self.registry.get(job_type)
        except (ValueError, KeyError):
            logger.error("No handler for job type", extra={"type": job_type})
            return None

    async def _invoke(
        self,
        handler: Any,
        session: AsyncSession,
        context: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        call = handler.handle(session, context, payload)
        timeout = self._timeout_for(handler)
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=timeout)

    def _timeout_for(self, handler: Any) -> float | None:
        return getattr(handler, "timeout_s", self.settings.job_timeout_s)

    async def _settle_failure(
        self,
        session: AsyncSession,
        handler: Any,
        context: JobContext,
        error: Exception,
        now: datetime | None,
    ) -> JobStatus:
        if isinstance(error, asyncio.TimeoutError):
            message = f"Job timed out after {self._timeout_for(handler)}s"
        else:
            message = str(error) or error.__class__.__name__

        permanent = classify_error(error) is ErrorKind.PERMANENT
        retry_after = error.retry_after if isinstance(error, RetryLaterError) else None

        logger.warning(
            "Job handler failed",
            extra={
                "job_id": str(context.job_id),
                "type": context.job_type,
                "attempt": context.attempt,
                "error_type": error.__class__.__name__,
                "permanent": permanent,
            },
            exc_info=not permanent and retry_after is None,
        )

        return await self.queue.fail(
            session,
            context.job_id,
            message,
            context.attempt,
            context.max_retries,
            permanent=permanent,
            retry_after=retry_after,
            policy=getattr(handler, "backoff_policy", None),
            now=now,
        )
