"""
Admin poll endpoints.

Manual triggers for the closing and reconciliation sweeps, plus the
activate/reopen transitions. Every route requires the X-Admin-Key header.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_outcome_oracle, get_tally_adapter, require_admin
from core.exceptions import AdapterUnavailable
from db.session import get_db
from schemas.poll import (
    CloseRequest,
    CloseResponse,
    CloseStatus,
    PollActionResponse,
    ReconcileResponse,
    ReconcileStatus,
)
from services.outcome_reconciliation import OutcomeReconciler
from services.poll_lifecycle import PollLifecycleService
from services.poll_resolution import PollResolutionEngine
from services.polymarket_client import OutcomeOracle
from services.vocdoni_client import AnonymousTallyAdapter

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/close", response_model=CloseResponse)
async def close_polls(
    tally: Annotated[Optional[AnonymousTallyAdapter], Depends(get_tally_adapter)],
    body: Optional[CloseRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> CloseResponse:
    """Close all due polls, or force-close one active poll."""
    force_poll_id = body.force_poll_id if body else None
    results = await PollResolutionEngine(db, tally).close_due_polls(force_poll_id=force_poll_id)

    closed = sum(
        1 for r in results if r.outcome_status in (CloseStatus.RESOLVED, CloseStatus.CLOSED_NO_VOTES)
    )
    logger.info(f"Admin closing sweep: {closed}/{len(results)} polls closed (force={force_poll_id})")
    return CloseResponse(closed=closed, results=results)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_outcomes(
    oracle: Annotated[Optional[OutcomeOracle], Depends(get_outcome_oracle)],
    db: AsyncSession = Depends(get_db),
) -> ReconcileResponse:
    """Settle resolved polls whose linked market has decided."""
    if oracle is None:
        raise AdapterUnavailable("Outcome oracle is not configured")

    results = await OutcomeReconciler(db, oracle).reconcile_outcomes()
    resolved = sum(1 for r in results if r.outcome_status == ReconcileStatus.ACTUAL_RESOLVED)
    return ReconcileResponse(resolved=resolved, results=results)


@router.post("/{poll_id}/activate", response_model=PollActionResponse)
async def activate_poll(poll_id: str, db: AsyncSession = Depends(get_db)) -> PollActionResponse:
    """Open an upcoming poll for the default duration."""
    poll = await PollLifecycleService(db).activate(poll_id)
    logger.info(f"Admin activated poll {poll_id}")
    return PollActionResponse(poll_id=poll.id, status=poll.status, opens_at=poll.opens_at, closes_at=poll.closes_at)


@router.post("/{poll_id}/reopen", response_model=PollActionResponse)
async def reopen_poll(poll_id: str, db: AsyncSession = Depends(get_db)) -> PollActionResponse:
    """Send a closed or resolved poll back to active, clearing its results."""
    poll = await PollLifecycleService(db).reopen(poll_id)
    logger.warning(f"Admin reopened poll {poll_id}")
    return PollActionResponse(poll_id=poll.id, status=poll.status, opens_at=poll.opens_at, closes_at=poll.closes_at)
