import time
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.logging import get_logger
from jobcore.config.settings import Settings, SettingsDep
from jobcore.infra.database import get_session, utcnow
from jobcore.v1.core.exceptions import create_success_response
from jobcore.v1.infra.jobs.models import Job, JobStatus
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.infra.lease.service import LeaseCoordinator

logger = get_logger(__name__)
router = APIRouter(tags=["health"])


class DatabaseHealth(BaseModel):
    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Who holds the worker lease and how much work is waiting."""

    lease_holder: str | None = None
    lease_expires_at: datetime | None = None
    lease_valid: bool = False
    last_heartbeat_age_seconds: int | None = None
    stuck_jobs_count: int = 0
    queue_depth: int = 0
    dead_letter_count: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Liveness plus lease and queue status.

    Only the database decides ``ok``; a missing lease holder is reported but
    does not make the API unhealthy, since workers may simply be restarting.
    """
    now = utcnow()
    database = await _database_health(session)

    worker = None
    if database.connected:
        try:
            worker = await _worker_health(session, settings, now)
        except Exception:
            logger.warning("Worker status unavailable", exc_info=True)
            worker = WorkerHealth()

    return create_success_response(
        data={
            "ok": database.connected,
            "version": settings.version,
            "environment": settings.environment,
            "timestamp": now.isoformat(),
            "database": database.model_dump(),
            "worker": worker.model_dump(mode="json") if worker else None,
        }
    )


async def _database_health(session: AsyncSession) -> DatabaseHealth:
    started = time.perf_counter()
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))
    elapsed_ms = (time.perf_counter() - started) * 1000
    return DatabaseHealth(connected=True, response_time_ms=round(elapsed_ms, 2))


async def _worker_health(
    session: AsyncSession, settings: Settings, now: datetime
) -> WorkerHealth:
    holder = await LeaseCoordinator().get_holder(session, settings.worker_role)
    stats = await JobQueue(settings).get_stats(session)

    stuck_before = now - timedelta(seconds=settings.stuck_job_threshold_s)
    stuck = await session.scalar(
        select(func.count(Job.id)).where(
            Job.status == JobStatus.PROCESSING.value, Job.last_attempt_at < stuck_before
        )
    )

    health = WorkerHealth(
        stuck_jobs_count=stuck or 0,
        queue_depth=stats.queue_depth,
        dead_letter_count=stats.dead_letter,
    )
    if holder is not None:
        health.lease_holder = holder.instance_id
        health.lease_expires_at = holder.lease_expires_at
        health.lease_valid = holder.is_valid(now)
        health.last_heartbeat_age_seconds = int(
            (now - holder.last_heartbeat).total_seconds()
        )
    return health
