"""
Lease coordinator: at most one active worker per role, no lock service.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import case, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.infra.database import insert_for, utcnow
from jobcore.v1.infra.lease.models import Lease

logger = logging.getLogger(__name__)


class LeaseCoordinator:
    """
    Two-step lease protocol over a single table row.

    Step 1 is an atomic upsert that creates the row when absent, takes it
    over when expired, renews it when already ours, and leaves it alone
    otherwise. Step 2 re-reads the row; only that read decides ownership,
    since the upsert reports success even when its WHERE clause declined
    the update.
    """

    async def try_acquire_or_renew(
        self,
        session: AsyncSession,
        worker_role: str,
        instance_id: str,
        lease_duration: timedelta,
        now: datetime | None = None,
    ) -> bool:
        now = now or utcnow()
        expires_at = now + lease_duration
        table = Lease.__table__

        stmt = insert_for(session, table).values(
            worker_role=worker_role,
            instance_id=instance_id,
            acquired_at=now,
            last_heartbeat=now,
            lease_expires_at=expires_at,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.worker_role],
            set_={
                "instance_id": excluded.instance_id,
                # A renewal keeps the original acquisition time
                "acquired_at": case(
                    (table.c.instance_id == excluded.instance_id, table.c.acquired_at),
                    else_=excluded.acquired_at,
                ),
                "last_heartbeat": excluded.last_heartbeat,
                "lease_expires_at": excluded.lease_expires_at,
            },
            where=or_(
                table.c.instance_id == excluded.instance_id,
                table.c.lease_expires_at < now,
            ),
        )
        await session.execute(stmt)
        await session.commit()

        holder = await self.get_holder(session, worker_role)
        await session.commit()

        acquired = holder is not None and holder.is_held_by(instance_id, now)
        if acquired:
            logger.debug(
                "Lease held",
                extra={
                    "worker_role": worker_role,
                    "instance_id": instance_id,
                    "lease_expires_at": expires_at.isoformat(),
                },
            )
        else:
            logger.debug(
                "Lease held by another instance",
                extra={
                    "worker_role": worker_role,
                    "instance_id": instance_id,
                    "holder": holder.instance_id if holder else None,
                },
            )
        return acquired

    async def release(
        self, session: AsyncSession, worker_role: str, instance_id: str
    ) -> bool:
        """Delete the lease row, but only while ``instance_id`` still owns it."""
        result = await session.execute(
            delete(Lease).where(
                Lease.worker_role == worker_role,
                Lease.instance_id == instance_id,
            )
        )
        await session.commit()

        released = (result.rowcount or 0) > 0
        logger.info(
            "Lease released" if released else "Lease not owned, nothing to release",
            extra={"worker_role": worker_role, "instance_id": instance_id},
        )
        return released

    async def get_holder(self, session: AsyncSession, worker_role: str) -> Lease | None:
        result = await session.execute(
            select(Lease)
            .where(Lease.worker_role == worker_role)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
