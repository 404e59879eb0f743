"""
Outbox service: stage notifications transactionally and drain them with
exactly-once delivery bookkeeping.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobcore.config.settings import Settings
from jobcore.infra.database import insert_for, utcnow
from jobcore.v1.infra.jobs.errors import ErrorKind
from jobcore.v1.infra.jobs.retry import LadderBackoff, decide_retry
from jobcore.v1.infra.outbox.channels import NotificationChannel, delivery_error_kind
from jobcore.v1.infra.outbox.models import AuditRecord, AuditStatus, OutboxMessage
from jobcore.v1.infra.outbox.schemas import OutboxStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass
class DrainResult:
    sent: int = 0
    retried: int = 0
    dead_lettered: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.retried + self.dead_lettered


def default_message_key(
    message_type: str, correlation_entity: str, destination_reference: dict[str, Any]
) -> str:
    """``<message_type>:<correlation_entity>:<destination digest>``."""
    digest = hashlib.sha256(
        json.dumps(destination_reference, sort_keys=True, default=str).encode()
    ).hexdigest()[:16]
    return f"{message_type}:{correlation_entity}:{digest}"


class OutboxService:
    """Service for staging and delivering outbound notifications."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.backoff = LadderBackoff.of(settings.outbox_backoff_minutes)

    async def stage(
        self,
        session: AsyncSession,
        correlation_entity: str,
        message_type: str,
        payload: dict[str, Any],
        destination_reference: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        commit: bool = True,
        now: datetime | None = None,
    ) -> UUID | None:
        """
        Stage a message: audit record plus outbox row in one transaction.

        Returns:
            The audit record id, or None when the message was already staged
        """
        now = now or utcnow()
        key = idempotency_key or default_message_key(
            message_type, correlation_entity, destination_reference
        )

        audit_table = AuditRecord.__table__
        result = await session.execute(
            insert_for(session, audit_table)
            .values(
                id=uuid4(),
                idempotency_key=key,
                correlation_entity=correlation_entity,
                message_type=message_type,
                status=AuditStatus.STAGED.value,
                attempt_count=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
            .returning(audit_table.c.id)
        )
        audit_id = result.scalar_one_or_none()

        if audit_id is None:
            if commit:
                await session.commit()
            logger.info("Message already staged", extra={"idempotency_key": key})
            return None

        session.add(
            OutboxMessage(
                id=uuid4(),
                sent_message_id=audit_id,
                payload=payload,
                destination_reference=destination_reference,
                attempt_count=0,
                next_attempt_at=now,
                created_at=now,
            )
        )
        if commit:
            await session.commit()
        else:
            await session.flush()

        logger.info(
            "Message staged",
            extra={
                "audit_id": str(audit_id),
                "message_type": message_type,
                "correlation_entity": correlation_entity,
            },
        )
        return audit_id

    async def drain(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: NotificationChannel,
        batch_size: int | None = None,
        now: datetime | None = None,
    ) -> DrainResult:
        """
        Deliver up to ``batch_size`` due messages.

        Each message is claimed in its own transaction and stays row-locked
        while the channel delivers it, so the outcome commits atomically with
        the claim.
        """
        drained = DrainResult()
        for _ in range(batch_size or self.settings.outbox_batch_size):
            async with session_factory() as session:
                outcome = await self._deliver_next(session, channel, now or utcnow())
            if outcome is None:
                break
            setattr(drained, outcome, getattr(drained, outcome) + 1)

        if drained.processed:
            logger.info(
                "Outbox drained",
                extra={
                    "sent": drained.sent,
                    "retried": drained.retried,
                    "dead_lettered": drained.dead_lettered,
                },
            )
        return drained

    async def _deliver_next(
        self, session: AsyncSession, channel: NotificationChannel, now: datetime
    ) -> str | None:
        result = await session.execute(
            select(OutboxMessage)
            .where(OutboxMessage.next_attempt_at <= now)
            .order_by(OutboxMessage.next_attempt_at)
            .limit(1)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        message = result.scalar_one_or_none()
        if message is None:
            await session.rollback()
            return None

        attempt = message.attempt_count + 1
        try:
            await channel.deliver(message.destination_reference, message.payload)
        except Exception as e:
            return await self._record_failure(session, message, attempt, e, now)

        await session.execute(delete(OutboxMessage).where(OutboxMessage.id == message.id))
        await session.execute(
            update(AuditRecord)
            .where(AuditRecord.id == message.sent_message_id)
            .values(
                status=AuditStatus.SENT.value,
                attempt_count=attempt,
                sent_at=now,
                last_error=None,
                updated_at=now,
            )
        )
        await session.commit()

        logger.info(
            "Outbox message sent",
            extra={"audit_id": str(message.sent_message_id), "attempt": attempt},
        )
        return "sent"

    async def _record_failure(
        self,
        session: AsyncSession,
        message: OutboxMessage,
        attempt: int,
        error: Exception,
        now: datetime,
    ) -> str:
        error_text = (str(error) or error.__class__.__name__)[:MAX_ERROR_LENGTH]
        decision = decide_retry(
            attempt,
            self.settings.outbox_max_attempts,
            self.backoff,
            now,
            permanent=delivery_error_kind(error) is ErrorKind.PERMANENT,
        )

        if decision.dead_letter:
            await session.execute(
                delete(OutboxMessage).where(OutboxMessage.id == message.id)
            )
            await session.execute(
                update(AuditRecord)
                .where(AuditRecord.id == message.sent_message_id)
                .values(
                    status=AuditStatus.FAILED.value,
                    attempt_count=attempt,
                    last_error=error_text,
                    updated_at=now,
                )
            )
            await session.commit()
            logger.error(
                "Outbox message dead-lettered",
                extra={
                    "audit_id": str(message.sent_message_id),
                    "attempt": attempt,
                    "error": error_text,
                },
            )
            return "dead_lettered"

        await session.execute(
            update(OutboxMessage)
            .where(OutboxMessage.id == message.id)
            .values(
                attempt_count=attempt,
                last_attempt_at=now,
                next_attempt_at=decision.next_attempt_at,
                last_error=error_text,
            )
        )
        await session.execute(
            update(AuditRecord)
            .where(AuditRecord.id == message.sent_message_id)
            .values(attempt_count=attempt, last_error=error_text, updated_at=now)
        )
        await session.commit()
        logger.warning(
            "Outbox delivery failed, retry scheduled",
            extra={
                "audit_id": str(message.sent_message_id),
                "attempt": attempt,
                "retry_in_s": decision.delay.total_seconds(),
                "error": error_text,
            },
        )
        return "retried"

    async def recover(
        self,
        session: AsyncSession,
        grace_period: timedelta | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Make abandoned due messages immediately eligible.

        Only messages whose last attempt is older than the grace period and
        whose next attempt is already due are touched; scheduled backoff in
        the future is left alone.
        """
        now = now or utcnow()
        grace = grace_period or timedelta(seconds=self.settings.outbox_recovery_grace_s)

        result = await session.execute(
            update(OutboxMessage)
            .where(
                OutboxMessage.last_attempt_at < now - grace,
                OutboxMessage.next_attempt_at <= now,
            )
            .values(next_attempt_at=now)
        )
        await session.commit()

        recovered = result.rowcount or 0
        if recovered > 0:
            logger.warning("Recovered stuck outbox messages", extra={"count": recovered})
        return recovered

    async def get_status(
        self, session: AsyncSession, now: datetime | None = None
    ) -> OutboxStatus:
        now = now or utcnow()

        pending_result = await session.execute(
            select(
                func.count(OutboxMessage.id),
                func.min(OutboxMessage.created_at),
            )
        )
        pending, oldest_pending_at = pending_result.one()

        due_result = await session.execute(
            select(func.count(OutboxMessage.id)).where(OutboxMessage.next_attempt_at <= now)
        )
        retrying_result = await session.execute(
            select(func.count(OutboxMessage.id)).where(OutboxMessage.attempt_count > 0)
        )
        audit_result = await session.execute(
            select(AuditRecord.status, func.count(AuditRecord.id)).group_by(AuditRecord.status)
        )
        by_status = dict(audit_result.all())

        return OutboxStatus(
            pending=pending or 0,
            due=due_result.scalar() or 0,
            retrying=retrying_result.scalar() or 0,
            oldest_pending_at=oldest_pending_at,
            staged=by_status.get(AuditStatus.STAGED.value, 0),
            sent=by_status.get(AuditStatus.SENT.value, 0),
            failed=by_status.get(AuditStatus.FAILED.value, 0),
        )

    async def get_audit(self, session: AsyncSession, idempotency_key: str) -> AuditRecord | None:
        result = await session.execute(
            select(AuditRecord)
            .where(AuditRecord.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
