"""
Vote-related Pydantic schemas.

Field checks (UUID shape, confidence level, receipt length) are done by the
vote service so that every caller gets the same ValidationError.
"""

from typing import Optional

from pydantic import BaseModel, Field


class VoteCreate(BaseModel):
    """Schema for casting a vote."""

    poll_id: str
    option_id: Optional[str] = Field(None, description="Required for public polls")
    confidence: str = "medium"
    vocdoni_vote_id: Optional[str] = Field(
        None, description="Receipt of a ballot the client already cast on the anonymous network"
    )


class VoteResult(BaseModel):
    """Response after successfully casting a vote."""

    points_earned: int
    new_balance: int
    current_streak: int
    max_streak: int
