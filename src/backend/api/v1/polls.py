"""
Poll endpoints for voters.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user
from db.session import get_db
from models.user import User
from schemas.poll import ElectionFinalize, ElectionFinalizeResponse
from services.poll_lifecycle import PollLifecycleService

router = APIRouter()


@router.post("/{poll_id}/election", response_model=ElectionFinalizeResponse)
async def finalize_election(
    poll_id: str,
    body: ElectionFinalize,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> ElectionFinalizeResponse:
    """
    Record the election a client created for an anonymous poll.

    The first voter to open an anonymous poll creates its election; racing
    voters get the winner's election id back.
    """
    return await PollLifecycleService(db).finalize_election(poll_id, body.election_id)
