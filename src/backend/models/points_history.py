"""
Append-only points ledger.

The sum of a user's entries converges to their swarm_points balance.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class PointsType(str, Enum):
    """Reason a ledger entry was written."""

    VOTE = "vote"
    CONSENSUS_BONUS = "consensus_bonus"
    ACTUAL_OUTCOME_BONUS = "actual_outcome_bonus"
    # Written by account flows outside this service
    REFERRAL_GIVEN = "referral_given"
    REFERRAL_RECEIVED = "referral_received"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class PointsHistory(Base):
    """One point-affecting event."""

    __tablename__ = "points_history"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer)
    type: Mapped[str] = mapped_column(String(32), index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    poll_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("polls.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
