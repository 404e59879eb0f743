"""
Worker lease model.
"""

from datetime import datetime

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from jobcore.infra.database import Base, UTCDateTime, utcnow


class Lease(Base):
    """Current holder of a worker role. Valid only while lease_expires_at > now."""

    __tablename__ = "job_worker_leases"

    worker_role: Mapped[str] = mapped_column(
        Text, primary_key=True, comment="Role contended for, one row per role"
    )
    instance_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Worker instance currently holding the lease"
    )
    acquired_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="When this holder took the lease"
    )
    last_heartbeat: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Last successful renewal"
    )
    lease_expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Lease is up for grabs after this instant"
    )

    def is_valid(self, now: datetime) -> bool:
        return self.lease_expires_at > now

    def is_held_by(self, instance_id: str, now: datetime) -> bool:
        return self.instance_id == instance_id and self.is_valid(now)
