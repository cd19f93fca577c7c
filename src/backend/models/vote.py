"""
Vote model for PostgreSQL storage.

One row per (user, poll). For anonymous polls the choice is not stored at
submission time; it is filled in from the ballot receipt when the poll closes.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class ConfidenceLevel(str, Enum):
    """Self-reported confidence. Informational only, never scored."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Vote(Base):
    """A user's ballot on one poll."""

    __tablename__ = "votes"

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
    poll_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("polls.id", ondelete="CASCADE"),
        index=True,
    )
    # NULL for anonymous polls until the receipt is reconciled
    option_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("poll_options.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    confidence: Mapped[str] = mapped_column(String(10), default=ConfidenceLevel.MEDIUM.value)

    # Receipt returned by the anonymous voting network
    vocdoni_vote_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Scoring (set when the poll resolves)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    matched_consensus: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    # Running total: base + consensus bonus + oracle bonus
    points_earned: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )

    __table_args__ = (
        # One vote per user per poll, enforced by storage
        UniqueConstraint("user_id", "poll_id", name="uq_votes_user_poll"),
        Index("ix_votes_poll_option", "poll_id", "option_id"),
    )
