"""
Poll repository for database operations.

Counter updates are single UPDATE statements (`col = col + 1`) and status
transitions are compare-and-set on the current status, so concurrent voters
and overlapping sweeps never lose an update.
"""

from datetime import datetime
from typing import Any, Optional, Sequence, Union
from uuid import uuid4

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.exceptions import ValidationError
from models.poll import ELECTION_PENDING, Poll, PollOption, PollStatus

MIN_OPTIONS = 2
MAX_OPTIONS = 20


class PollRepository:
    """Repository for poll database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    async def get_by_id(self, poll_id: str) -> Optional[Poll]:
        """Get a poll by ID with its options, refreshing any cached copy."""
        result = await self.db.execute(
            select(Poll)
            .options(selectinload(Poll.options))
            .where(Poll.id == poll_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        question: str,
        options: Sequence[Union[str, dict]],
        category: str,
        opens_at: datetime,
        closes_at: datetime,
        status: PollStatus = PollStatus.UPCOMING,
        day_number: int = 1,
        description: Optional[str] = None,
        points_for_voting: Optional[int] = None,
        points_for_consensus: Optional[int] = None,
        polymarket_event_id: Optional[str] = None,
        polymarket_slug: Optional[str] = None,
        vocdoni_election_id: Optional[str] = None,
    ) -> Poll:
        """
        Create a poll together with its options.

        Options are given in display order, either as labels or as dicts with
        `label` and optional `flag_emoji` / `polymarket_price`.
        """
        if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            raise ValidationError(f"A poll needs between {MIN_OPTIONS} and {MAX_OPTIONS} options")
        if closes_at <= opens_at:
            raise ValidationError("closes_at must be after opens_at")

        poll = Poll(
            id=str(uuid4()),
            question=question,
            description=description,
            category=category,
            day_number=day_number,
            opens_at=opens_at,
            closes_at=closes_at,
            status=status.value,
            total_votes=0,
            points_for_voting=points_for_voting if points_for_voting is not None else settings.VOTE_BASE_POINTS,
            points_for_consensus=(
                points_for_consensus if points_for_consensus is not None else settings.CONSENSUS_BONUS_POINTS
            ),
            polymarket_event_id=polymarket_event_id,
            polymarket_slug=polymarket_slug,
            vocdoni_election_id=vocdoni_election_id,
        )
        self.db.add(poll)
        await self.db.flush()

        for idx, option in enumerate(options, start=1):
            data = {"label": option} if isinstance(option, str) else dict(option)
            self.db.add(
                PollOption(
                    id=str(uuid4()),
                    poll_id=poll.id,
                    label=data["label"],
                    flag_emoji=data.get("flag_emoji"),
                    polymarket_price=data.get("polymarket_price"),
                    display_order=idx,
                    vote_count=0,
                    vote_percentage=0.0,
                    is_winner=False,
                )
            )

        await self.db.flush()
        return await self.get_by_id(poll.id)  # type: ignore[return-value]

    # ========================================================================
    # Sweep selection
    # ========================================================================

    async def list_closable_ids(self, now: datetime, force_poll_id: Optional[str] = None) -> list[str]:
        """
        Ids of active polls to close.

        With force_poll_id, only that poll is selected and its deadline is ignored.
        """
        query = select(Poll.id).where(Poll.status == PollStatus.ACTIVE.value)
        if force_poll_id:
            query = query.where(Poll.id == force_poll_id)
        else:
            query = query.where(Poll.closes_at <= now)

        result = await self.db.execute(query.order_by(Poll.closes_at.asc()))
        return [str(poll_id) for poll_id in result.scalars().all()]

    async def list_awaiting_outcome_ids(self) -> list[str]:
        """Ids of resolved, market-linked polls with no actual outcome yet."""
        result = await self.db.execute(
            select(Poll.id)
            .where(
                and_(
                    Poll.status == PollStatus.RESOLVED.value,
                    Poll.actual_outcome_option_id.is_(None),
                    Poll.polymarket_event_id.isnot(None),
                )
            )
            .order_by(Poll.resolved_at.asc())
        )
        return [str(poll_id) for poll_id in result.scalars().all()]

    # ========================================================================
    # Tallies
    # ========================================================================

    async def increment_option_vote_count(self, option_id: str) -> bool:
        """Atomically add one vote to an option."""
        result = await self.db.execute(
            update(PollOption).where(PollOption.id == option_id).values(vote_count=PollOption.vote_count + 1)
        )
        return self._get_rowcount(result) > 0

    async def increment_total_votes(self, poll_id: str) -> bool:
        """Atomically add one vote to a poll's total."""
        result = await self.db.execute(
            update(Poll).where(Poll.id == poll_id).values(total_votes=Poll.total_votes + 1)
        )
        return self._get_rowcount(result) > 0

    async def overwrite_option_vote_count(self, option_id: str, vote_count: int) -> None:
        """Replace an option's tally with an authoritative external count."""
        await self.db.execute(update(PollOption).where(PollOption.id == option_id).values(vote_count=vote_count))

    async def overwrite_total_votes(self, poll_id: str, total_votes: int) -> None:
        """Replace a poll's total with an authoritative external count."""
        await self.db.execute(update(Poll).where(Poll.id == poll_id).values(total_votes=total_votes))

    async def set_option_result(self, option_id: str, vote_percentage: float, is_winner: bool) -> None:
        """Record an option's final share and winner flag."""
        await self.db.execute(
            update(PollOption)
            .where(PollOption.id == option_id)
            .values(vote_percentage=vote_percentage, is_winner=is_winner)
        )

    # ========================================================================
    # Lifecycle transitions (compare-and-set)
    # ========================================================================

    async def mark_resolved(self, poll_id: str, consensus_option_id: str, resolved_at: datetime) -> bool:
        """active -> resolved. Returns False if the poll was no longer active."""
        result = await self.db.execute(
            update(Poll)
            .where(and_(Poll.id == poll_id, Poll.status == PollStatus.ACTIVE.value))
            .values(
                status=PollStatus.RESOLVED.value,
                crowd_consensus_option_id=consensus_option_id,
                winning_option_id=consensus_option_id,
                resolved_at=resolved_at,
            )
        )
        return self._get_rowcount(result) == 1

    async def mark_closed(self, poll_id: str) -> bool:
        """active -> closed (no votes, no consensus)."""
        result = await self.db.execute(
            update(Poll)
            .where(and_(Poll.id == poll_id, Poll.status == PollStatus.ACTIVE.value))
            .values(status=PollStatus.CLOSED.value)
        )
        return self._get_rowcount(result) == 1

    async def set_actual_outcome(self, poll_id: str, option_id: str) -> bool:
        """Record the oracle outcome once; later calls are no-ops."""
        result = await self.db.execute(
            update(Poll)
            .where(
                and_(
                    Poll.id == poll_id,
                    Poll.status == PollStatus.RESOLVED.value,
                    Poll.actual_outcome_option_id.is_(None),
                )
            )
            .values(actual_outcome_option_id=option_id)
        )
        return self._get_rowcount(result) == 1

    async def activate(self, poll_id: str, opens_at: datetime, closes_at: datetime) -> bool:
        """upcoming -> active with a fresh voting window."""
        result = await self.db.execute(
            update(Poll)
            .where(and_(Poll.id == poll_id, Poll.status == PollStatus.UPCOMING.value))
            .values(status=PollStatus.ACTIVE.value, opens_at=opens_at, closes_at=closes_at)
        )
        return self._get_rowcount(result) == 1

    async def reopen(self, poll_id: str, opens_at: datetime, closes_at: datetime) -> bool:
        """closed/resolved -> active, discarding the resolution fields."""
        result = await self.db.execute(
            update(Poll)
            .where(
                and_(
                    Poll.id == poll_id,
                    Poll.status.in_([PollStatus.CLOSED.value, PollStatus.RESOLVED.value]),
                )
            )
            .values(
                status=PollStatus.ACTIVE.value,
                opens_at=opens_at,
                closes_at=closes_at,
                resolved_at=None,
                winning_option_id=None,
                crowd_consensus_option_id=None,
            )
        )
        if self._get_rowcount(result) != 1:
            return False

        await self.db.execute(
            update(PollOption).where(PollOption.poll_id == poll_id).values(is_winner=False, vote_percentage=0.0)
        )
        return True

    async def finalize_election(self, poll_id: str, election_id: str) -> bool:
        """Swap the pending sentinel for the real election id, once."""
        result = await self.db.execute(
            update(Poll)
            .where(and_(Poll.id == poll_id, Poll.vocdoni_election_id == ELECTION_PENDING))
            .values(vocdoni_election_id=election_id)
        )
        return self._get_rowcount(result) == 1
