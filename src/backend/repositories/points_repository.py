"""
Points ledger repository.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from models.points_history import PointsHistory, PointsType


class PointsRepository:
    """Append-only access to the points ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        user_id: str,
        amount: int,
        points_type: PointsType,
        description: Optional[str] = None,
        poll_id: Optional[str] = None,
    ) -> PointsHistory:
        """Write one ledger entry."""
        entry = PointsHistory(
            id=str(uuid4()),
            user_id=user_id,
            amount=amount,
            type=points_type.value,
            description=description,
            poll_id=poll_id,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry
