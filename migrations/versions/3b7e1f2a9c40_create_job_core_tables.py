"""create meeting, job queue, lease and outbox tables

Revision ID: 3b7e1f2a9c40
Revises:
Create Date: 2026-10-19 09:12:41.508114

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1f2a9c40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "meetings",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("organizer_id", sa.Text, nullable=True),
        sa.Column(
            "join_url",
            sa.Text,
            nullable=True,
            comment="Join link used to match call records",
        ),
        sa.Column(
            "online_meeting_id",
            sa.Text,
            nullable=True,
            comment="External meeting id used to fetch artifacts",
        ),
        sa.Column("call_record_id", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="scheduled"),
        sa.Column("start_time", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("end_time", sa.TIMESTAMP(timezone=True), nullable=True),
        # Enrichment state machine
        sa.Column(
            "enrichment_status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|enriching|enriched|failed",
        ),
        sa.Column(
            "enrichment_attempts", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("last_enrichment_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "enrichment_retry_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Due time of the next enrichment attempt",
        ),
        sa.Column("enrichment_error", sa.Text, nullable=True),
        # Artifacts
        sa.Column("recording_url", sa.Text, nullable=True),
        sa.Column("transcript_url", sa.Text, nullable=True),
        sa.Column("transcript_content", sa.Text, nullable=True),
        sa.Column("actual_duration_seconds", sa.Integer, nullable=True),
        sa.Column("transcript_word_count", sa.Integer, nullable=True),
        # Minutes processing gate
        sa.Column("processing_decision", sa.Text, nullable=True),
        sa.Column("processing_decision_reason", sa.Text, nullable=True),
        sa.Column("processing_decision_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_meetings_enrichment_status", "meetings", ["enrichment_status"])
    op.create_index("ix_meetings_join_url", "meetings", ["join_url"])

    op.create_table(
        "meeting_minutes",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "meeting_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("meetings.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "processing_status", sa.Text, nullable=False, server_default="pending"
        ),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column(
            "content",
            sa.JSON,
            nullable=True,
            comment="Structured minutes from the generator",
        ),
        sa.Column(
            "approval_status", sa.Text, nullable=False, server_default="pending_review"
        ),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("email_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("archive_url", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "chat_conversations",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", sa.Text, nullable=False, unique=True),
        sa.Column("service_url", sa.Text, nullable=False),
        sa.Column("tenant_id", sa.Text, nullable=True),
        sa.Column(
            "conversation_type",
            sa.Text,
            nullable=False,
            server_default="personal",
            comment="personal|groupChat|channel",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # Durable job queue
    op.create_table(
        "job_queue",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "idempotency_key",
            sa.Text,
            nullable=False,
            unique=True,
            comment="Deterministic key of the logical work",
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|processing|completed|failed|dead_letter",
        ),
        sa.Column(
            "attempt_count",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Attempts started so far",
        ),
        sa.Column(
            "max_retries",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="Attempts allowed before dead-letter",
        ),
        sa.Column(
            "scheduled_for",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run",
        ),
        sa.Column(
            "last_attempt_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the last attempt was claimed",
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "processed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Completion time",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'dead_letter')",
            name="job_queue_status_check",
        ),
    )
    op.create_index(
        "ix_job_queue_status_scheduled_for", "job_queue", ["status", "scheduled_for"]
    )

    # One row per worker role; the row's holder is the active worker
    op.create_table(
        "job_worker_leases",
        sa.Column(
            "worker_role",
            sa.Text,
            primary_key=True,
            comment="Role contended for, one row per role",
        ),
        sa.Column(
            "instance_id",
            sa.Text,
            nullable=False,
            comment="Worker instance currently holding the lease",
        ),
        sa.Column(
            "acquired_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="When this holder took the lease",
        ),
        sa.Column(
            "last_heartbeat",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Last successful renewal",
        ),
        sa.Column(
            "lease_expires_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Lease is up for grabs after this instant",
        ),
    )

    # Outbox: delivery audit plus pending deliveries
    op.create_table(
        "sent_messages",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "idempotency_key",
            sa.Text,
            nullable=False,
            unique=True,
            comment="Deterministic key of the message",
        ),
        sa.Column(
            "correlation_entity",
            sa.Text,
            nullable=False,
            comment="Domain entity the message is about, e.g. a minutes id",
        ),
        sa.Column(
            "message_type", sa.Text, nullable=False, comment="Kind of notification"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="staged",
            comment="staged|sent|failed",
        ),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('staged', 'sent', 'failed')", name="sent_messages_status_check"
        ),
    )

    op.create_table(
        "message_outbox",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "sent_message_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("sent_messages.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Message body handed to the channel",
        ),
        sa.Column(
            "destination_reference",
            sa.JSON,
            nullable=False,
            comment="Where to deliver, e.g. a chat conversation reference",
        ),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "next_attempt_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Due time of the next delivery",
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_message_outbox_next_attempt_at", "message_outbox", ["next_attempt_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("message_outbox")
    op.drop_table("sent_messages")
    op.drop_table("job_worker_leases")
    op.drop_table("job_queue")
    op.drop_table("chat_conversations")
    op.drop_table("meeting_minutes")
    op.drop_table("meetings")
