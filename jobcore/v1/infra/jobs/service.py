"""
Durable queue store: enqueue, claim and settle background jobs.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings
from jobcore.infra.database import insert_for, utcnow
from jobcore.v1.infra.jobs.models import CLAIMABLE_STATUSES, Job, JobStatus, JobType
from jobcore.v1.infra.jobs.retry import BackoffPolicy, ExponentialBackoff, decide_retry
from jobcore.v1.infra.jobs.schemas import QueueStats

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class JobQueue:
    """Service for the durable job queue."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.default_policy = ExponentialBackoff(settings.job_backoff_base_minutes)

    async def enqueue(
        self,
        session: AsyncSession,
        job_type: JobType | str,
        idempotency_key: str,
        payload: dict[str, Any],
        max_retries: int | None = None,
        scheduled_for: datetime | None = None,
        *,
        commit: bool = True,
    ) -> UUID | None:
        """
        Enqueue a job unless its idempotency key already exists.

        Args:
            session: Database session
            job_type: Handler to route the job to
            idempotency_key: Deterministic key built from domain identifiers
            payload: Job parameters
            max_retries: Attempt budget, defaults to settings.job_max_retries
            scheduled_for: Earliest run time, defaults to now
            commit: Commit immediately; pass False to join the caller's transaction

        Returns:
            The new job id, or None when a job with this key already exists
        """
        if not idempotency_key:
            raise ValueError("idempotency_key is required for job enqueueing")

        if max_retries is None:
            max_retries = self.settings.job_max_retries
        elif max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        now = utcnow()
        job_type_value = JobType(job_type).value
        table = Job.__table__
        stmt = (
            insert_for(session, table)
            .values(
                id=uuid4(),
                job_type=job_type_value,
                idempotency_key=idempotency_key,
                payload=payload,
                status=JobStatus.PENDING.value,
                attempt_count=0,
                max_retries=max_retries,
                scheduled_for=scheduled_for or now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
            .returning(table.c.id)
        )

        result = await session.execute(stmt)
        job_id = result.scalar_one_or_none()
        if commit:
            await session.commit()

        if job_id is None:
            logger.info(
                "Job already queued",
                extra={"type": job_type_value, "idempotency_key": idempotency_key},
            )
            return None

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job_id),
                "type": job_type_value,
                "idempotency_key": idempotency_key,
            },
        )
        return job_id

    async def dequeue(
        self,
        session: AsyncSession,
        job_types: Sequence[JobType | str] | None = None,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Claim the oldest eligible job using SELECT FOR UPDATE SKIP LOCKED.

        The claimed job is marked processing and its attempt_count is
        incremented in the same transaction as the lock.
        """
        now = now or utcnow()

        claim_query = select(Job).where(
            Job.status.in_(CLAIMABLE_STATUSES), Job.scheduled_for <= now
        )
        if job_types:
            claim_query = claim_query.where(
                Job.job_type.in_([JobType(t).value for t in job_types])
            )
        claim_query = (
            claim_query.order_by(Job.scheduled_for, Job.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )

        result = await session.execute(claim_query)
        job = result.scalar_one_or_none()
        if job is None:
            await session.rollback()
            return None

        job.status = JobStatus.PROCESSING.value
        job.attempt_count = job.attempt_count + 1
        job.last_attempt_at = now
        job.updated_at = now
        await session.commit()
        await session.refresh(job)

        logger.info(
            "Claimed job",
            extra={
                "job_id": str(job.id),
                "type": job.job_type,
                "attempt": job.attempt_count,
                "max_retries": job.max_retries,
            },
        )
        return job

    async def complete(
        self, session: AsyncSession, job_id: UUID, now: datetime | None = None
    ) -> None:
        """Mark a job completed. Safe to call more than once."""
        now = now or utcnow()
        await session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(
                status=JobStatus.COMPLETED.value,
                processed_at=now,
                updated_at=now,
            )
        )
        await session.commit()
        logger.info("Completed job", extra={"job_id": str(job_id)})

    async def fail(
        self,
        session: AsyncSession,
        job_id: UUID,
        error: str,
        current_attempt: int,
        max_retries: int,
        *,
        permanent: bool = False,
        retry_after: timedelta | None = None,
        policy: BackoffPolicy | None = None,
        now: datetime | None = None,
    ) -> JobStatus:
        """
        Record a failed attempt.

        The attempt that exhausts max_retries, or a permanent error, moves the
        job to dead_letter. Anything else is rescheduled as failed, which stays
        claimable once scheduled_for passes.
        """
        now = now or utcnow()
        decision = decide_retry(
            current_attempt,
            max_retries,
            policy or self.default_policy,
            now,
            permanent=permanent,
            retry_after=retry_after,
        )
        error = (error or "Unknown error")[:MAX_ERROR_LENGTH]

        if decision.dead_letter:
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(
                    status=JobStatus.DEAD_LETTER.value,
                    last_error=error,
                    updated_at=now,
                )
            )
            await session.commit()
            logger.error(
                "Job moved to dead-letter",
                extra={
                    "job_id": str(job_id),
                    "attempt": current_attempt,
                    "permanent": permanent,
                    "error": error,
                },
            )
            return JobStatus.DEAD_LETTER

        await session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(
                status=JobStatus.FAILED.value,
                last_error=error,
                scheduled_for=decision.next_attempt_at,
                updated_at=now,
            )
        )
        await session.commit()
        logger.warning(
            "Job failed, retry scheduled",
            extra={
                "job_id": str(job_id),
                "attempt": current_attempt,
                "max_retries": max_retries,
                "retry_in_s": decision.delay.total_seconds(),
                "error": error,
            },
        )
        return JobStatus.FAILED

    async def recover_stuck(
        self,
        session: AsyncSession,
        stale_threshold: timedelta | None = None,
        now: datetime | None = None,
    ) -> int:
        """Return abandoned processing jobs to failed so they run again now."""
        now = now or utcnow()
        threshold = stale_threshold or timedelta(seconds=self.settings.stuck_job_threshold_s)
        cutoff = now - threshold

        result = await session.execute(
            update(Job)
            .where(
                Job.status == JobStatus.PROCESSING.value,
                Job.last_attempt_at < cutoff,
            )
            .values(
                status=JobStatus.FAILED.value,
                last_error="Job processing timeout - recovered after worker loss",
                scheduled_for=now,
                updated_at=now,
            )
        )
        await session.commit()

        recovered = result.rowcount or 0
        if recovered > 0:
            logger.warning(
                "Recovered stuck jobs",
                extra={
                    "stuck_job_count": recovered,
                    "threshold_seconds": threshold.total_seconds(),
                },
            )
        return recovered

    async def cleanup_completed(
        self,
        session: AsyncSession,
        older_than: timedelta | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delete completed jobs past the retention window."""
        now = now or utcnow()
        retention = older_than or timedelta(days=self.settings.job_retention_days)
        cutoff = now - retention

        result = await session.execute(
            delete(Job).where(
                Job.status == JobStatus.COMPLETED.value,
                Job.processed_at < cutoff,
            )
        )
        await session.commit()

        deleted_count = result.rowcount or 0
        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                extra={
                    "deleted_count": deleted_count,
                    "retention_days": retention.days,
                },
            )
        return deleted_count

    async def get_stats(self, session: AsyncSession) -> QueueStats:
        """Count jobs per status."""
        result = await session.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        by_status = dict(result.all())
        return QueueStats(
            pending=by_status.get(JobStatus.PENDING.value, 0),
            processing=by_status.get(JobStatus.PROCESSING.value, 0),
            completed=by_status.get(JobStatus.COMPLETED.value, 0),
            failed=by_status.get(JobStatus.FAILED.value, 0),
            dead_letter=by_status.get(JobStatus.DEAD_LETTER.value, 0),
        )

    async def retry(
        self, session: AsyncSession, job_id: UUID, now: datetime | None = None
    ) -> bool:
        """Re-admit a failed or dead-lettered job with a fresh attempt budget."""
        now = now or utcnow()
        result = await session.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status.in_([JobStatus.FAILED.value, JobStatus.DEAD_LETTER.value]),
            )
            .values(
                status=JobStatus.PENDING.value,
                attempt_count=0,
                scheduled_for=now,
                updated_at=now,
            )
        )
        await session.commit()

        success = (result.rowcount or 0) > 0
        if success:
            logger.info("Job retried", extra={"job_id": str(job_id)})
        return success

    async def get_job(self, session: AsyncSession, job_id: UUID) -> Job | None:
        result = await session.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_job_by_key(
        self, session: AsyncSession, idempotency_key: str
    ) -> Job | None:
        result = await session.execute(
            select(Job)
            .where(Job.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        statuses: Sequence[JobStatus] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first with a total count for pagination."""
        base_query = select(Job)
        if statuses:
            base_query = base_query.where(Job.status.in_([s.value for s in statuses]))
        if job_type:
            base_query = base_query.where(Job.job_type == job_type)

        total_result = await session.execute(
            select(func.count()).select_from(base_query.subquery())
        )
        total = total_result.scalar() or 0

        jobs_result = await session.execute(
            base_query.order_by(Job.created_at.desc()).offset(offset).limit(limit)
        )
        return list(jobs_result.scalars().all()), total
