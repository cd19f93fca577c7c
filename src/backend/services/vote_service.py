"""
Vote submission.

A vote is accepted exactly once per (user, poll). The unique constraint on
votes is the real guard; the pre-check only avoids a wasted ballot cast for
an obvious duplicate. Counters and user statistics are updated with single
atomic statements and the whole submission commits as one transaction.
"""

from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    AdapterUnavailable,
    Conflict,
    NotActive,
    NotFound,
    StorageError,
    ValidationError,
)
from db.time import as_utc, utc_date, utcnow
from models.points_history import PointsType
from models.poll import Poll, PollOption, PollStatus
from models.vote import ConfidenceLevel
from repositories.points_repository import PointsRepository
from repositories.poll_repository import PollRepository
from repositories.user_repository import UserRepository
from repositories.vote_repository import VoteRepository
from schemas.vote import VoteResult
from services.vocdoni_client import AnonymousTallyAdapter

logger = structlog.get_logger(__name__)

MAX_RECEIPT_LENGTH = 200


def compute_streak(
    last_voted_date: Optional[date],
    current_streak: int,
    max_streak: int,
    today: date,
) -> tuple[int, int]:
    """
    New (current_streak, max_streak) for a vote cast on `today`.

    Voting the day after the last vote extends the streak, voting again on
    the same day leaves it as is, anything else starts over at 1.
    """
    if last_voted_date == today - timedelta(days=1):
        new_streak = current_streak + 1
    elif last_voted_date != today:
        new_streak = 1
    else:
        new_streak = current_streak
    return new_streak, max(max_streak, new_streak)


def _require_uuid(value: str, field: str) -> str:
    """Canonical lower-case form of a UUID string."""
    try:
        return str(UUID(str(value)))
    except ValueError:
        raise ValidationError(f"Invalid {field}")


class VoteService:
    """Accepts votes and awards the base points."""

    def __init__(self, db: AsyncSession, tally: Optional[AnonymousTallyAdapter] = None):
        self.db = db
        self.tally = tally
        self.polls = PollRepository(db)
        self.votes = VoteRepository(db)
        self.users = UserRepository(db)
        self.points = PointsRepository(db)

    def _validate(
        self,
        poll_id: str,
        option_id: Optional[str],
        confidence: str,
        external_receipt_id: Optional[str],
    ) -> tuple[str, Optional[str]]:
        """Check the request fields; returns the canonical poll and option ids."""
        poll_id = _require_uuid(poll_id, "poll_id")
        if option_id is not None:
            option_id = _require_uuid(option_id, "option_id")
        if confidence not in {level.value for level in ConfidenceLevel}:
            raise ValidationError("Invalid confidence level")
        if external_receipt_id is not None:
            if not isinstance(external_receipt_id, str) or len(external_receipt_id) > MAX_RECEIPT_LENGTH:
                raise ValidationError("Invalid vocdoni_vote_id")
        return poll_id, option_id

    @staticmethod
    def _find_option(poll: Poll, option_id: Optional[str]) -> Optional[PollOption]:
        if option_id is None:
            return None
        for option in poll.options:
            if option.id == option_id:
                return option
        raise NotFound("Option not found")

    async def _cast_ballot(self, election_id: str, option: PollOption, voter_id: str) -> Optional[str]:
        """Server-side fallback cast; a failure never blocks the vote."""
        if self.tally is None:
            logger.warning("anonymous_ballot_cast_skipped", reason="no tally adapter", election_id=election_id)
            return None
        try:
            return await self.tally.cast_ballot(election_id, option.ballot_index, voter_id=voter_id)
        except AdapterUnavailable as e:
            logger.warning("anonymous_ballot_cast_failed", election_id=election_id, error=e.message)
            return None

    async def submit_vote(
        self,
        auth_uid: str,
        poll_id: str,
        option_id: Optional[str],
        confidence: str,
        external_receipt_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VoteResult:
        """Record one vote and award the poll's base points."""
        poll_id, option_id = self._validate(poll_id, option_id, confidence, external_receipt_id)
        now = now or utcnow()

        user = await self.users.get_by_auth_uid(auth_uid)
        if not user:
            raise NotFound("User not found")

        poll = await self.polls.get_by_id(poll_id)
        if not poll:
            raise NotFound("Poll not found")

        if poll.status != PollStatus.ACTIVE.value or not (as_utc(poll.opens_at) <= now <= as_utc(poll.closes_at)):
            raise NotActive("Poll is not active")

        privacy = poll.ballot_privacy
        option = self._find_option(poll, option_id)
        if option is None and not privacy.is_anonymous:
            raise ValidationError("option_id is required")
        if option is None and external_receipt_id is None and privacy.has_election:
            raise ValidationError("option_id or vocdoni_vote_id is required")

        if await self.votes.has_voted(user.id, poll.id):
            raise Conflict("Already voted on this poll")

        receipt = external_receipt_id
        if privacy.has_election and receipt is None and option is not None:
            receipt = await self._cast_ballot(privacy.election_id, option, user.id)  # type: ignore[arg-type]

        base_points = poll.points_for_voting
        new_streak, new_max_streak = compute_streak(
            user.last_voted_date,
            user.current_streak or 0,
            user.max_streak or 0,
            utc_date(now),
        )

        try:
            await self.votes.create(
                user_id=user.id,
                poll_id=poll.id,
                option_id=None if privacy.is_anonymous else option.id,  # type: ignore[union-attr]
                confidence=confidence,
                vocdoni_vote_id=receipt,
                points_earned=base_points,
            )

            if not privacy.is_anonymous:
                await self.polls.increment_option_vote_count(option.id)  # type: ignore[union-attr]
            await self.polls.increment_total_votes(poll.id)

            new_balance = await self.users.update_after_vote(
                user.id,
                points=base_points,
                current_streak=new_streak,
                max_streak=new_max_streak,
                voted_on=utc_date(now),
            )
            if new_balance is None:
                raise NotFound("User not found")

            await self.points.append(
                user_id=user.id,
                amount=base_points,
                points_type=PointsType.VOTE,
                description="Voted on poll",
                poll_id=poll.id,
            )
            await self.db.commit()
        except NotFound:
            await self.db.rollback()
            raise
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Already voted on this poll")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("vote_submission_failed", poll_id=poll_id, error=str(e))
            raise StorageError("Failed to record vote") from e

        logger.info(
            "vote_submitted",
            poll_id=poll_id,
            anonymous=privacy.is_anonymous,
            has_receipt=receipt is not None,
        )

        return VoteResult(
            points_earned=base_points,
            new_balance=new_balance,
            current_streak=new_streak,
            max_streak=new_max_streak,
        )
