"""
Vote repository for database operations.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.vote import Vote


class VoteRepository:
    """Repository for vote database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def has_voted(self, user_id: str, poll_id: str) -> bool:
        """Check if the user already has a vote on the poll."""
        result = await self.db.execute(
            select(func.count(Vote.id)).where(and_(Vote.user_id == user_id, Vote.poll_id == poll_id))
        )
        count = result.scalar() or 0
        return count > 0

    async def create(
        self,
        user_id: str,
        poll_id: str,
        option_id: Optional[str],
        confidence: str,
        vocdoni_vote_id: Optional[str] = None,
        points_earned: int = 0,
    ) -> Vote:
        """
        Insert a vote row.

        Raises sqlalchemy IntegrityError if (user_id, poll_id) already exists.
        """
        vote = Vote(
            id=str(uuid4()),
            user_id=user_id,
            poll_id=poll_id,
            option_id=option_id,
            confidence=confidence,
            vocdoni_vote_id=vocdoni_vote_id,
            points_earned=points_earned,
        )

        self.db.add(vote)
        await self.db.flush()

        return vote

    async def list_by_poll(self, poll_id: str) -> list[Vote]:
        """All votes for a poll, oldest first."""
        result = await self.db.execute(
            select(Vote)
            .where(Vote.poll_id == poll_id)
            .order_by(Vote.created_at.asc(), Vote.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_by_poll(self, poll_id: str) -> int:
        """Get total vote rows for a poll."""
        result = await self.db.execute(select(func.count(Vote.id)).where(Vote.poll_id == poll_id))
        return result.scalar() or 0

    async def set_option(self, vote_id: str, option_id: str) -> None:
        """Attach the reconciled choice to an anonymous vote."""
        await self.db.execute(update(Vote).where(Vote.id == vote_id).values(option_id=option_id))

    async def score(self, vote_id: str, is_correct: bool, bonus: int) -> None:
        """Record consensus correctness and add the consensus bonus."""
        await self.db.execute(
            update(Vote)
            .where(Vote.id == vote_id)
            .values(
                is_correct=is_correct,
                matched_consensus=is_correct,
                points_earned=Vote.points_earned + bonus,
            )
        )

    async def add_points(self, vote_id: str, bonus: int) -> None:
        """Add a later bonus to the vote's running points."""
        await self.db.execute(update(Vote).where(Vote.id == vote_id).values(points_earned=Vote.points_earned + bonus))
