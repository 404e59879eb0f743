"""
Lease-holding job worker.

One worker per role is active at a time. The active worker drains the
outbox, then claims and routes at most one job per tick; everyone else sits
in standby polling for the lease.
"""

import asyncio
import contextlib
import signal
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobcore.config.logging import bind_worker_context, get_logger
from jobcore.config.settings import Settings
from jobcore.infra.database import Database
from jobcore.v1.core.registries import JobRegistry, job_registry
from jobcore.v1.infra.jobs.models import JobStatus, JobType
from jobcore.v1.infra.jobs.registry_init import build_pipeline, register_job_handlers
from jobcore.v1.infra.jobs.router import JobRouter
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.infra.lease.service import LeaseCoordinator
from jobcore.v1.infra.outbox.channels import NotificationChannel, WebhookNotificationChannel
from jobcore.v1.infra.outbox.service import DrainResult, OutboxService
from jobcore.v1.meetings.enrichment import EnrichmentService

logger = get_logger(__name__)


class WorkerState(str, Enum):
    STANDBY = "standby"
    ACTIVE = "active"
    DRAINING = "draining"
    STOPPED = "stopped"


class JobWorker:
    """
    Broker-less job worker.

    Features:
    - Lease-based single active instance with an independent heartbeat task
    - Outbox drain ahead of job processing on every tick
    - Startup and periodic recovery of work abandoned by crashed workers
    - Interruptible sleeps so stop requests and lease loss act immediately
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        queue: JobQueue,
        outbox: OutboxService,
        channel: NotificationChannel,
        router: JobRouter,
        lease: LeaseCoordinator | None = None,
        enrichment: EnrichmentService | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.queue = queue
        self.outbox = outbox
        self.channel = channel
        self.router = router
        self.lease = lease or LeaseCoordinator()
        self.enrichment = enrichment

        self.instance_id = settings.instance_id
        self.worker_role = settings.worker_role
        self.state = WorkerState.STANDBY
        self.lease_lost = False
        self._started = False
        self._wake = asyncio.Event()
        self._last_maintenance: float | None = None
        self.log = logger.bind(worker_id=self.instance_id, worker_role=self.worker_role)

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(seconds=self.settings.lease_duration_s)

    async def start(self) -> None:
        """Run until stopped or the lease is lost."""
        if self._started:
            raise RuntimeError("Worker is already running")
        self._started = True

        bind_worker_context(self.instance_id, self.worker_role)
        self.log.info(
            "Starting job worker",
            poll_interval_s=self.settings.poll_interval_s,
            lease_duration_s=self.settings.lease_duration_s,
        )

        try:
            await self.recover_on_startup()
            if await self._wait_for_lease():
                await self._run_active()
        finally:
            self.state = WorkerState.STOPPED
            self.log.info("Job worker stopped", lease_lost=self.lease_lost)

    def stop(self) -> None:
        """Request a graceful stop; safe to call from a signal handler."""
        if self.state in (WorkerState.DRAINING, WorkerState.STOPPED):
            return
        self.log.info("Stop requested", state=self.state.value)
        if self.state is WorkerState.ACTIVE:
            self.state = WorkerState.DRAINING
        else:
            self.state = WorkerState.STOPPED
        self._wake.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.stop)

    async def recover_on_startup(self, now: datetime | None = None) -> None:
        """Heal work abandoned by a previous instance before contending."""
        async with self.session_factory() as session:
            jobs = await self.queue.recover_stuck(session, now=now)
            messages = await self.outbox.recover(session, now=now)
        self.log.info("Startup recovery complete", jobs=jobs, outbox_messages=messages)

    async def _wait_for_lease(self) -> bool:
        while self.state is WorkerState.STANDBY:
            if await self._try_lease():
                if self.state is not WorkerState.STANDBY:
                    await self._release_lease()
                    return False
                self.log.info("Lease acquired, worker active")
                return True
            self.log.debug("Lease held elsewhere, staying in standby")
            await self._sleep(self.settings.standby_poll_interval_s)
        return False

    async def _try_lease(self) -> bool:
        try:
            async with self.session_factory() as session:
                return await self.lease.try_acquire_or_renew(
                    session, self.worker_role, self.instance_id, self.lease_duration
                )
        except Exception:
            self.log.exception("Lease acquisition failed")
            return False

    async def _run_active(self) -> None:
        self.state = WorkerState.ACTIVE
        self._last_maintenance = asyncio.get_running_loop().time()
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            while self.state is WorkerState.ACTIVE:
                await self.run_once()
                if self.state is not WorkerState.ACTIVE:
                    break
                await self._sleep(self.settings.poll_interval_s)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            if not self.lease_lost:
                await self._release_lease()

    async def _release_lease(self) -> None:
        try:
            async with self.session_factory() as session:
                await self.lease.release(session, self.worker_role, self.instance_id)
        except Exception:
            self.log.exception("Failed to release lease")

    async def _heartbeat_loop(self) -> None:
        """Renew the lease independently of job processing."""
        while self.state is WorkerState.ACTIVE:
            await self._sleep(self.settings.heartbeat_interval_s)
            if self.state is not WorkerState.ACTIVE:
                return
            if not await self._try_lease():
                self._on_lease_lost()
                return

    def _on_lease_lost(self) -> None:
        self.log.error("Lease lost, draining worker")
        self.lease_lost = True
        if self.state is WorkerState.ACTIVE:
            self.state = WorkerState.DRAINING
        self._wake.set()

    async def run_once(self, now: datetime | None = None) -> None:
        """One active tick: outbox first, then at most one job, then maintenance if due."""
        try:
            await self.drain_outbox(now)
        except Exception:
            self.log.exception("Error draining outbox")

        if self.state is not WorkerState.ACTIVE:
            return
        try:
            await self.process_next_job(now)
        except Exception:
            self.log.exception("Error processing job")

        if self._maintenance_due():
            await self.run_maintenance(now)

    async def drain_outbox(self, now: datetime | None = None) -> DrainResult:
        return await self.outbox.drain(self.session_factory, self.channel, now=now)

    async def process_next_job(self, now: datetime | None = None) -> JobStatus | None:
        """Claim one job and route it; returns its resulting status or None when idle."""
        async with self.session_factory() as session:
            job = await self.queue.dequeue(session, now=now)
            if job is None:
                return None

            job_log = self.log.bind(job_id=str(job.id), job_type=job.job_type)
            job_log.info("Processing job started", attempt=job.attempt_count)
            status = await self.router.route(session, job, now=now)
            job_log.info("Processing job finished", status=status.value)
            return status

    def _maintenance_due(self) -> bool:
        now = asyncio.get_running_loop().time()
        if self._last_maintenance is None:
            self._last_maintenance = now
            return False
        return now - self._last_maintenance >= self.settings.cleanup_interval_s

    async def run_maintenance(self, now: datetime | None = None) -> None:
        """Retention cleanup, stuck-job recovery and the enrichment sweep."""
        self._last_maintenance = asyncio.get_running_loop().time()
        try:
            async with self.session_factory() as session:
                deleted = await self.queue.cleanup_completed(session, now=now)
                recovered = await self.queue.recover_stuck(session, now=now)
                requeued = 0
                if self.enrichment is not None:
                    requeued = await self.enrichment.sweep_stuck(session, now=now)
        except Exception:
            self.log.exception("Error in periodic maintenance")
            return

        self.log.info(
            "Periodic maintenance complete",
            deleted_jobs=deleted,
            recovered_jobs=recovered,
            requeued_enrichments=requeued,
        )

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early on stop or lease loss."""
        if self._wake.is_set():
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)


async def run_worker(
    settings: Settings,
    registry: JobRegistry | None = None,
    channel: NotificationChannel | None = None,
) -> JobWorker:
    """Build a worker from settings, run it to completion and return it."""
    pipeline = build_pipeline(settings)
    registry = register_job_handlers(pipeline, registry or job_registry)
    missing = registry.unregistered(job_type.value for job_type in JobType)
    if missing:
        raise RuntimeError(f"No handler registered for job types: {', '.join(missing)}")
    if settings.environment != "development":
        registry.freeze()
    database = Database(settings)

    channel = channel or WebhookNotificationChannel(settings)
    worker = JobWorker(
        settings,
        database.SessionLocal,
        pipeline.queue,
        pipeline.outbox,
        channel,
        JobRouter(settings, pipeline.queue, registry),
        enrichment=pipeline.enrichment,
    )
    worker.install_signal_handlers()
    try:
        await worker.start()
    finally:
        await pipeline.aclose()
        if isinstance(channel, WebhookNotificationChannel):
            await channel.aclose()
        await database.close()
    return worker
