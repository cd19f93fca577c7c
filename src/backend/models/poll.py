"""
Poll model for PostgreSQL storage.

Contains poll metadata, lifecycle status, resolution results and the
aggregated per-option tallies.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base

# Stored in vocdoni_election_id while the on-chain election is being created.
ELECTION_PENDING = "pending"


class PollStatus(str, Enum):
    """Poll lifecycle status."""

    UPCOMING = "upcoming"  # Created, not yet accepting votes
    ACTIVE = "active"  # Accepting votes inside [opens_at, closes_at]
    CLOSED = "closed"  # Terminal: closed with no votes, no consensus
    RESOLVED = "resolved"  # Consensus computed and votes scored


class BallotMode(str, Enum):
    """How ballots for a poll are recorded."""

    PUBLIC = "public"  # Choice stored on the vote row, tallied locally
    ANONYMOUS_PENDING = "anonymous_pending"  # Anonymous, election not created yet
    ANONYMOUS = "anonymous"  # Anonymous, tallied by the external election


@dataclass(frozen=True)
class BallotPrivacy:
    """Tagged view of a poll's ballot privacy."""

    mode: BallotMode
    election_id: Optional[str] = None

    @classmethod
    def from_election_id(cls, election_id: Optional[str]) -> "BallotPrivacy":
        if not election_id:
            return cls(BallotMode.PUBLIC)
        if election_id == ELECTION_PENDING:
            return cls(BallotMode.ANONYMOUS_PENDING)
        return cls(BallotMode.ANONYMOUS, election_id)

    @property
    def is_anonymous(self) -> bool:
        return self.mode is not BallotMode.PUBLIC

    @property
    def has_election(self) -> bool:
        """True once ballots can be cast on and tallied by the election."""
        return self.mode is BallotMode.ANONYMOUS


class Poll(Base):
    """
    One question with a closing deadline.

    Lifecycle: upcoming -> active -> (closed | resolved). A resolved poll may
    later gain actual_outcome_option_id from the market oracle without
    changing status. Operators can reopen closed/resolved polls.
    """

    __tablename__ = "polls"

    __table_args__ = (
        # Closing sweep: "active polls whose deadline has passed"
        Index("ix_polls_status_closes_at", "status", "closes_at"),
        CheckConstraint("closes_at > opens_at", name="ck_polls_window"),
    )

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Question
    question: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), index=True)
    day_number: Mapped[int] = mapped_column(Integer, default=1)

    # Voting window
    opens_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closes_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PollStatus.UPCOMING.value,
        index=True,
    )

    # Aggregated results (atomic increments only)
    total_votes: Mapped[int] = mapped_column(Integer, default=0)

    # Rewards
    points_for_voting: Mapped[int] = mapped_column(Integer, default=1000)
    points_for_consensus: Mapped[int] = mapped_column(Integer, default=5000)

    # External links
    polymarket_event_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    polymarket_slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # NULL = public poll, "pending" = anonymous awaiting on-chain creation
    vocdoni_election_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Resolution
    crowd_consensus_option_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    winning_option_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    actual_outcome_option_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    options: Mapped[list["PollOption"]] = relationship(
        "PollOption",
        back_populates="poll",
        cascade="all, delete-orphan",
        order_by="PollOption.display_order",
    )

    @property
    def ballot_privacy(self) -> BallotPrivacy:
        return BallotPrivacy.from_election_id(self.vocdoni_election_id)

    @property
    def ordered_options(self) -> list["PollOption"]:
        """Options in canonical display order."""
        return sorted(self.options, key=lambda o: o.display_order)


class PollOption(Base):
    """
    Individual answer for a poll.

    display_order is 1-based and dense; display_order - 1 is the ballot index
    shared with the anonymous tally network.
    """

    __tablename__ = "poll_options"

    __table_args__ = (UniqueConstraint("poll_id", "display_order", name="uq_poll_options_poll_order"),)

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    poll_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("polls.id", ondelete="CASCADE"),
        index=True,
    )

    label: Mapped[str] = mapped_column(Text)
    flag_emoji: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer)

    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    vote_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    is_winner: Mapped[bool] = mapped_column(Boolean, default=False)

    # Informational market price snapshot
    polymarket_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    poll: Mapped["Poll"] = relationship("Poll", back_populates="options")

    @property
    def ballot_index(self) -> int:
        return self.display_order - 1
