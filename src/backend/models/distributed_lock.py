"""
Distributed Lock Model

Lease rows used to keep the closing and oracle sweeps single-flight across
replicas. Sweeps are safe to overlap (poll transitions are compare-and-set),
the lease only avoids redundant adapter traffic.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class DistributedLock(Base):
    """
    One lease per named sweep.

    - lock_name: sweep identifier ('close_polls', 'reconcile_outcomes')
    - locked_by: instance holding the lease
    - expires_at: lease end, after which another instance may take over
    - version: optimistic-locking counter bumped on every acquisition
    """

    __tablename__ = "distributed_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    lock_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Monitoring
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_result: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the lease has run out."""
        if not self.expires_at:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) > expires_at

    def __repr__(self) -> str:
        return f"<DistributedLock(name={self.lock_name}, locked={self.is_locked}, by={self.locked_by})>"
