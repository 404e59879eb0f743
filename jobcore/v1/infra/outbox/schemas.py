"""
Outbox Pydantic schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class OutboxStatus(BaseModel):
    """Snapshot of the outbox for admin endpoints and the CLI."""

    pending: int = Field(default=0, description="Messages still awaiting delivery")
    due: int = Field(default=0, description="Pending messages whose next attempt is due")
    retrying: int = Field(default=0, description="Pending messages with at least one failed attempt")
    oldest_pending_at: datetime | None = None
    staged: int = 0
    sent: int = 0
    failed: int = 0
