"""
Poll Resolution Engine

Closes active polls whose window has elapsed (or one forced poll), picks the
crowd consensus and scores every vote.

Each poll is processed in its own transaction. The status change is a
compare-and-set on `status = 'active'`, so when two sweeps race on the same
poll exactly one of them scores it and the other reports it as skipped.
Tally adapter failures degrade to the stored counts; any other failure
rolls back that poll only.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AdapterUnavailable, SwarmBetError, ValidationError
from db.time import utcnow
from models.points_history import PointsType
from models.poll import Poll, PollOption, PollStatus
from models.vote import Vote
from repositories.points_repository import PointsRepository
from repositories.poll_repository import PollRepository
from repositories.user_repository import UserRepository
from repositories.vote_repository import VoteRepository
from schemas.poll import CloseOutcome, CloseStatus
from services.vocdoni_client import AnonymousTallyAdapter, ElectionTally

logger = structlog.get_logger(__name__)


def select_consensus(options: list[PollOption], counts: dict[str, int]) -> Optional[PollOption]:
    """
    Option with the strictly greatest count.

    Options are walked in display order, so on a tie the first one wins.
    Returns None when no option has any votes.
    """
    consensus = None
    max_votes = 0
    for option in options:
        count = counts.get(option.id, 0)
        if count > max_votes:
            max_votes = count
            consensus = option
    return consensus


def vote_percentage(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(100 * count / total, 2)


class PollResolutionEngine:
    """Closing sweep for active polls."""

    def __init__(self, db: AsyncSession, tally: Optional[AnonymousTallyAdapter] = None):
        self.db = db
        self.tally = tally
        self.polls = PollRepository(db)
        self.votes = VoteRepository(db)
        self.users = UserRepository(db)
        self.points = PointsRepository(db)

    async def close_due_polls(
        self,
        force_poll_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[CloseOutcome]:
        """
        Close every active poll past its deadline, or only `force_poll_id`.

        Returns one outcome per candidate poll.
        """
        if force_poll_id is not None:
            try:
                force_poll_id = str(UUID(str(force_poll_id)))
            except ValueError:
                raise ValidationError("Invalid force_poll_id")

        now = now or utcnow()
        poll_ids = await self.polls.list_closable_ids(now, force_poll_id)
        await self.db.commit()

        results: list[CloseOutcome] = []
        for poll_id in poll_ids:
            try:
                outcome = await self._close_poll(poll_id, now)
                if outcome.outcome_status == CloseStatus.SKIPPED:
                    await self.db.rollback()
                else:
                    await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.exception("close_poll_failed", poll_id=poll_id, error=str(e))
                message = e.message if isinstance(e, SwarmBetError) else "Failed to close poll"
                outcome = CloseOutcome(poll_id=poll_id, outcome_status=CloseStatus.ERROR, error=message)
            results.append(outcome)

        if results:
            logger.info(
                "close_polls_sweep_finished",
                candidates=len(poll_ids),
                resolved=sum(1 for r in results if r.outcome_status == CloseStatus.RESOLVED),
                errors=sum(1 for r in results if r.outcome_status == CloseStatus.ERROR),
            )
        return results

    async def _fetch_tally(self, poll: Poll, election_id: str) -> Optional[ElectionTally]:
        if self.tally is None:
            logger.warning("anonymous_tally_skipped", poll_id=poll.id, reason="no tally adapter")
            return None
        try:
            return await self.tally.fetch_election_result(election_id)
        except AdapterUnavailable as e:
            logger.warning("anonymous_tally_unavailable", poll_id=poll.id, error=e.message)
            return None

    async def _reconcile_receipts(
        self,
        poll: Poll,
        election_id: str,
        options: list[PollOption],
        votes: list[Vote],
    ) -> dict[str, str]:
        """
        Recover the chosen option of each anonymous receipt.

        Returns vote id -> option id for every vote whose choice is known.
        A receipt that fails to verify only leaves that one vote unresolved.
        """
        choices: dict[str, str] = {}
        for vote in votes:
            if vote.option_id:
                choices[vote.id] = vote.option_id
                continue
            if not vote.vocdoni_vote_id or self.tally is None:
                continue

            try:
                index = await self.tally.verify_ballot_receipt(election_id, vote.vocdoni_vote_id)
            except AdapterUnavailable as e:
                logger.warning("receipt_reconciliation_failed", poll_id=poll.id, vote_id=vote.id, error=e.message)
                continue

            if index is None or not 0 <= index < len(options):
                logger.warning("ballot_receipt_unresolved", poll_id=poll.id, vote_id=vote.id, index=index)
                continue

            option_id = options[index].id
            await self.votes.set_option(vote.id, option_id)
            choices[vote.id] = option_id
        return choices

    async def _close_poll(self, poll_id: str, now: datetime) -> CloseOutcome:
        poll = await self.polls.get_by_id(poll_id)
        if poll is None or poll.status != PollStatus.ACTIVE.value:
            return CloseOutcome(poll_id=poll_id, outcome_status=CloseStatus.SKIPPED)

        privacy = poll.ballot_privacy
        options = poll.ordered_options
        counts = {option.id: option.vote_count or 0 for option in options}
        total = poll.total_votes or 0
        votes = await self.votes.list_by_poll(poll.id)
        choices = {vote.id: vote.option_id for vote in votes if vote.option_id}
        discrepancy = False

        if privacy.has_election:
            election_id: str = privacy.election_id  # type: ignore[assignment]
            tally = await self._fetch_tally(poll, election_id)
            if tally is not None and tally.counts:
                for option in options:
                    if option.ballot_index < len(tally.counts):
                        counts[option.id] = tally.counts[option.ballot_index]
                        await self.polls.overwrite_option_vote_count(option.id, counts[option.id])
                total = tally.total
                await self.polls.overwrite_total_votes(poll.id, total)

            choices = await self._reconcile_receipts(poll, election_id, options, votes)

            stored_votes = await self.votes.count_by_poll(poll.id)
            if tally is not None and (total != stored_votes or len(choices) != stored_votes):
                discrepancy = True
                logger.warning(
                    "anonymous_tally_discrepancy",
                    poll_id=poll.id,
                    tally_total=total,
                    stored_votes=stored_votes,
                    reconciled_receipts=len(choices),
                )

        consensus = select_consensus(options, counts)
        if consensus is None:
            if not await self.polls.mark_closed(poll.id):
                return CloseOutcome(poll_id=poll_id, outcome_status=CloseStatus.SKIPPED)
            logger.info(f"Closed poll without votes: {poll_id}")
            return CloseOutcome(
                poll_id=poll_id,
                outcome_status=CloseStatus.CLOSED_NO_VOTES,
                total_votes=total,
                anonymous=privacy.is_anonymous,
                tally_discrepancy=discrepancy,
            )

        if not await self.polls.mark_resolved(poll.id, consensus.id, now):
            return CloseOutcome(poll_id=poll_id, outcome_status=CloseStatus.SKIPPED)

        for option in options:
            await self.polls.set_option_result(
                option.id,
                vote_percentage(counts[option.id], total),
                is_winner=option.id == consensus.id,
            )

        bonus = poll.points_for_consensus
        description = f"Matched crowd consensus on: {poll.question}"
        correct_voters = 0
        for vote in votes:
            is_correct = choices.get(vote.id) == consensus.id
            await self.votes.score(vote.id, is_correct, bonus if is_correct else 0)
            if not is_correct:
                await self.users.refresh_accuracy(vote.user_id)
                continue
            await self.users.award_points(vote.user_id, bonus, increment_correct=True)
            await self.points.append(
                user_id=vote.user_id,
                amount=bonus,
                points_type=PointsType.CONSENSUS_BONUS,
                description=description,
                poll_id=poll.id,
            )
            correct_voters += 1

        logger.info(
            "poll_resolved",
            poll_id=poll_id,
            consensus=consensus.label,
            correct_voters=correct_voters,
            total_votes=total,
        )
        return CloseOutcome(
            poll_id=poll_id,
            outcome_status=CloseStatus.RESOLVED,
            consensus_label=consensus.label,
            total_votes=total,
            anonymous=privacy.is_anonymous,
            correct_voters=correct_voters,
            tally_discrepancy=discrepancy,
        )
