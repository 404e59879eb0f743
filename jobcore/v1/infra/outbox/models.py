"""
Outbox and delivery audit models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobcore.infra.database import Base, UTCDateTime, utcnow


class AuditStatus(str, Enum):
    STAGED = "staged"
    SENT = "sent"
    FAILED = "failed"


class AuditRecord(Base):
    """
    Delivery audit for one logical outbound message.

    The unique idempotency_key makes re-staging the same message a no-op.
    """

    __tablename__ = "sent_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    idempotency_key: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="Deterministic key of the message"
    )
    correlation_entity: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Domain entity the message is about, e.g. a minutes id"
    )
    message_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Kind of notification"
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=AuditStatus.STAGED.value, comment="staged|sent|failed"
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('staged', 'sent', 'failed')", name="sent_messages_status_check"
        ),
    )


class OutboxMessage(Base):
    """A pending delivery. Exists exactly while its audit record is staged."""

    __tablename__ = "message_outbox"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    sent_message_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("sent_messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Message body handed to the channel"
    )
    destination_reference: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Where to deliver, e.g. a chat conversation reference"
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Due time of the next delivery"
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_message_outbox_next_attempt_at", "next_attempt_at"),)
