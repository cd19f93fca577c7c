"""
Administrative poll transitions and election finalization.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import Conflict, NotFound, ValidationError
from db.time import utcnow
from models.poll import Poll
from repositories.poll_repository import PollRepository
from schemas.poll import ElectionFinalizeResponse

logger = structlog.get_logger(__name__)

MIN_ELECTION_ID_LENGTH = 10
MAX_ELECTION_ID_LENGTH = 200


def _require_uuid(value: str) -> str:
    try:
        return str(UUID(str(value)))
    except ValueError:
        raise ValidationError("Invalid poll_id")


class PollLifecycleService:
    """activate / reopen / finalize_election."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.polls = PollRepository(db)

    def _window(self, now: Optional[datetime]) -> tuple[datetime, datetime]:
        opens_at = now or utcnow()
        return opens_at, opens_at + timedelta(hours=settings.POLL_DEFAULT_DURATION_HOURS)

    async def _get_poll(self, poll_id: str) -> Poll:
        poll = await self.polls.get_by_id(_require_uuid(poll_id))
        if not poll:
            raise NotFound("Poll not found")
        return poll

    async def activate(self, poll_id: str, now: Optional[datetime] = None) -> Poll:
        """Open an upcoming poll for the default duration starting now."""
        poll_id = _require_uuid(poll_id)
        status = (await self._get_poll(poll_id)).status
        opens_at, closes_at = self._window(now)

        if not await self.polls.activate(poll_id, opens_at, closes_at):
            await self.db.rollback()
            raise Conflict(f"Cannot activate a poll in status {status}")
        await self.db.commit()

        logger.info("poll_activated", poll_id=poll_id, closes_at=closes_at.isoformat())
        return await self._get_poll(poll_id)

    async def reopen(self, poll_id: str, now: Optional[datetime] = None) -> Poll:
        """
        Send a closed or resolved poll back to active.

        Resolution fields and option results are cleared. Votes, awarded
        points and any recorded actual outcome are kept.
        """
        poll_id = _require_uuid(poll_id)
        status = (await self._get_poll(poll_id)).status
        opens_at, closes_at = self._window(now)

        if not await self.polls.reopen(poll_id, opens_at, closes_at):
            await self.db.rollback()
            raise Conflict(f"Cannot reopen a poll in status {status}")
        await self.db.commit()

        logger.info("poll_reopened", poll_id=poll_id, closes_at=closes_at.isoformat())
        return await self._get_poll(poll_id)

    async def finalize_election(self, poll_id: str, election_id: str) -> ElectionFinalizeResponse:
        """
        Replace the pending election placeholder with the real election id.

        Only the first caller wins; later callers get the stored id back with
        already_finalized set.
        """
        poll_id = _require_uuid(poll_id)
        if (
            not isinstance(election_id, str)
            or not MIN_ELECTION_ID_LENGTH <= len(election_id) <= MAX_ELECTION_ID_LENGTH
        ):
            raise ValidationError("Invalid election_id")

        if await self.polls.finalize_election(poll_id, election_id):
            await self.db.commit()
            logger.info("election_finalized", poll_id=poll_id)
            return ElectionFinalizeResponse(poll_id=poll_id, election_id=election_id, already_finalized=False)

        await self.db.rollback()
        poll = await self._get_poll(poll_id)
        if not poll.ballot_privacy.has_election:
            raise Conflict("Poll has no pending election")

        return ElectionFinalizeResponse(
            poll_id=poll_id,
            election_id=poll.vocdoni_election_id,  # type: ignore[arg-type]
            already_finalized=True,
        )
