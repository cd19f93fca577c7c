"""
Vote endpoints.

Only authenticated users can vote, once per poll, and only while the poll is
inside its voting window.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_tally_adapter
from db.session import get_db
from models.user import User
from schemas.vote import VoteCreate, VoteResult
from services.vocdoni_client import AnonymousTallyAdapter
from services.vote_service import VoteService

router = APIRouter()


@router.post("", response_model=VoteResult, status_code=status.HTTP_201_CREATED)
async def cast_vote(
    vote_data: VoteCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    tally: Annotated[Optional[AnonymousTallyAdapter], Depends(get_tally_adapter)],
    db: AsyncSession = Depends(get_db),
) -> VoteResult:
    """
    Cast a vote on a poll.

    For anonymous polls the client may cast the ballot on the tally network
    itself and pass the receipt as `vocdoni_vote_id`; otherwise the server
    casts it. Either way the stored vote carries no option.
    """
    service = VoteService(db, tally)
    return await service.submit_vote(
        auth_uid=current_user.auth_uid,
        poll_id=vote_data.poll_id,
        option_id=vote_data.option_id,
        confidence=vote_data.confidence,
        external_receipt_id=vote_data.vocdoni_vote_id,
    )
