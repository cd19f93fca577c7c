"""
User repository for database operations.

Statistics are only changed through single UPDATE statements so that two
concurrent awards can never read-modify-write over each other.
"""

from datetime import date
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import Float, Numeric, cast, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User


def _accuracy(correct: Any) -> Any:
    """SQL expression for round(correct / total_predictions, 4), 0 when there are no predictions."""
    ratio = cast(correct, Float) / func.nullif(User.total_predictions, 0)
    return func.coalesce(func.round(cast(ratio, Numeric(10, 4)), 4), 0.0)


class UserRepository:
    """Repository for user database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_auth_uid(self, auth_uid: str) -> Optional[User]:
        """Get a user by the identity provider subject."""
        result = await self.db.execute(select(User).where(User.auth_uid == auth_uid))
        return result.scalar_one_or_none()

    async def create(self, auth_uid: str, username: str) -> User:
        """Provision a user with zeroed statistics."""
        user = User(
            id=str(uuid4()),
            auth_uid=auth_uid,
            username=username,
            swarm_points=0,
            correct_predictions=0,
            total_predictions=0,
            current_streak=0,
            max_streak=0,
            accuracy_score=0.0,
        )

        self.db.add(user)
        await self.db.flush()

        return user

    async def update_after_vote(
        self,
        user_id: str,
        points: int,
        current_streak: int,
        max_streak: int,
        voted_on: date,
    ) -> Optional[int]:
        """
        Apply the statistics of a new vote in one statement.

        Returns the new points balance, or None if the user does not exist.
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                swarm_points=User.swarm_points + points,
                total_predictions=User.total_predictions + 1,
                current_streak=current_streak,
                max_streak=max_streak,
                last_voted_date=voted_on,
            )
            .returning(User.swarm_points)
        )
        return result.scalar_one_or_none()

    async def award_points(self, user_id: str, points: int, increment_correct: bool = False) -> bool:
        """
        Add points to a user, optionally counting a correct prediction.

        When increment_correct is set, accuracy_score is recomputed from the
        incremented correct count in the same statement.
        """
        values: dict[str, Any] = {"swarm_points": User.swarm_points + points}
        if increment_correct:
            values["correct_predictions"] = User.correct_predictions + 1
            values["accuracy_score"] = _accuracy(User.correct_predictions + 1)

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return self._get_rowcount(result) > 0

    async def refresh_accuracy(self, user_id: str) -> bool:
        """Recompute accuracy_score from the stored counts for a user who scored no bonus."""
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(accuracy_score=_accuracy(User.correct_predictions))
            .execution_options(synchronize_session="fetch")
        )
        return self._get_rowcount(result) > 0
