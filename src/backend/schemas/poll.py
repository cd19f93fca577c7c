"""
Poll-related Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CloseStatus(str, Enum):
    """What a closing sweep did with one poll."""

    RESOLVED = "resolved"
    CLOSED_NO_VOTES = "closed_no_votes"
    SKIPPED = "skipped"  # another sweep got there first
    ERROR = "error"


class ReconcileStatus(str, Enum):
    """What an oracle sweep did with one poll."""

    ACTUAL_RESOLVED = "actual_resolved"
    UNDECIDED = "undecided"
    NO_MATCH = "no_match"
    UNAVAILABLE = "unavailable"
    SKIPPED = "skipped"
    ERROR = "error"


class CloseRequest(BaseModel):
    """Body of a manual closing sweep."""

    force_poll_id: Optional[str] = Field(
        None, description="Close this active poll now, ignoring its deadline"
    )


class CloseOutcome(BaseModel):
    """Per-poll result of a closing sweep."""

    poll_id: str
    outcome_status: CloseStatus
    consensus_label: Optional[str] = None
    total_votes: int = 0
    anonymous: bool = False
    correct_voters: int = 0
    tally_discrepancy: bool = False
    error: Optional[str] = None


class CloseResponse(BaseModel):
    """Closing sweep summary."""

    closed: int
    results: list[CloseOutcome]


class ReconcileOutcome(BaseModel):
    """Per-poll result of an oracle sweep."""

    poll_id: str
    outcome_status: ReconcileStatus
    correct_voters: int = 0
    total_voters: int = 0
    outcome_label: Optional[str] = None


class ReconcileResponse(BaseModel):
    """Oracle sweep summary."""

    resolved: int
    results: list[ReconcileOutcome]


class ElectionFinalize(BaseModel):
    """Real election id replacing the pending placeholder."""

    election_id: str


class ElectionFinalizeResponse(BaseModel):
    poll_id: str
    election_id: str
    already_finalized: bool


class PollActionResponse(BaseModel):
    """Poll state after an administrative transition."""

    poll_id: str
    status: str
    opens_at: datetime
    closes_at: datetime

    model_config = {"from_attributes": True}
