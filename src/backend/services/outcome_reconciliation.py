"""
Outcome reconciliation against the prediction market.

Resolved polls linked to a market are checked until the market settles.
The actual outcome is tracked separately from the crowd consensus; the two
may disagree. Voters who picked the actual outcome get a further bonus,
accuracy is left untouched.
"""

from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import AdapterUnavailable, SwarmBetError
from models.points_history import PointsType
from models.poll import PollOption, PollStatus
from repositories.points_repository import PointsRepository
from repositories.poll_repository import PollRepository
from repositories.user_repository import UserRepository
from repositories.vote_repository import VoteRepository
from schemas.poll import ReconcileOutcome, ReconcileStatus
from services.polymarket_client import MarketEvent, OutcomeOracle

logger = structlog.get_logger(__name__)


def decide_outcome(event: MarketEvent, threshold: float) -> Optional[str]:
    """
    Label of the settled outcome, or None while the market is undecided.

    Sub-markets are walked in order and open ones are ignored. Within a
    sub-market the first outcome priced at or above `threshold` decides:
    "Yes" names the sub-market itself, "No" settles nothing for it, any
    other label is the outcome.
    """
    for market in event.markets:
        if not market.closed:
            continue

        label = None
        for outcome, price in zip(market.outcomes, market.prices):
            if price >= threshold:
                if outcome == "Yes":
                    label = market.question or market.group_item_title or outcome
                elif outcome != "No":
                    label = outcome
                break

        if label:
            return label
    return None


def match_option(options: Sequence[PollOption], label: str) -> Optional[PollOption]:
    """Case-insensitive exact match first, then substring in either direction."""
    wanted = label.strip().lower()
    if not wanted:
        return None

    normalized = [(option, option.label.strip().lower()) for option in options]
    for option, option_label in normalized:
        if option_label == wanted:
            return option
    for option, option_label in normalized:
        if option_label and (option_label in wanted or wanted in option_label):
            return option
    return None


class OutcomeReconciler:
    """Oracle sweep for resolved, market-linked polls."""

    def __init__(self, db: AsyncSession, oracle: OutcomeOracle):
        self.db = db
        self.oracle = oracle
        self.polls = PollRepository(db)
        self.votes = VoteRepository(db)
        self.users = UserRepository(db)
        self.points = PointsRepository(db)

    async def reconcile_outcomes(self) -> list[ReconcileOutcome]:
        """Settle every poll whose market has decided. Undecided polls are retried next sweep."""
        poll_ids = await self.polls.list_awaiting_outcome_ids()
        await self.db.commit()

        results: list[ReconcileOutcome] = []
        for poll_id in poll_ids:
            try:
                outcome = await self._reconcile_poll(poll_id)
                if outcome.outcome_status == ReconcileStatus.ACTUAL_RESOLVED:
                    await self.db.commit()
                else:
                    await self.db.rollback()
            except Exception as e:
                await self.db.rollback()
                logger.exception("oracle_poll_failed", poll_id=poll_id, error=str(e))
                outcome = ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.ERROR)
            results.append(outcome)

        if results:
            logger.info(
                "reconcile_outcomes_sweep_finished",
                candidates=len(poll_ids),
                resolved=sum(1 for r in results if r.outcome_status == ReconcileStatus.ACTUAL_RESOLVED),
            )
        return results

    async def _reconcile_poll(self, poll_id: str) -> ReconcileOutcome:
        poll = await self.polls.get_by_id(poll_id)
        if (
            poll is None
            or poll.status != PollStatus.RESOLVED.value
            or poll.actual_outcome_option_id is not None
            or not poll.polymarket_event_id
        ):
            return ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.SKIPPED)

        try:
            event = await self.oracle.fetch_market(poll.polymarket_event_id)
        except AdapterUnavailable as e:
            logger.warning("outcome_oracle_unavailable", poll_id=poll_id, error=e.message)
            return ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.UNAVAILABLE)

        label = decide_outcome(event, settings.ORACLE_DECIDED_PROBABILITY)
        if not label:
            return ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.UNDECIDED)

        option = match_option(poll.ordered_options, label)
        if option is None:
            logger.info("outcome_label_unmatched", poll_id=poll_id, outcome_label=label)
            return ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.NO_MATCH, outcome_label=label)

        if not await self.polls.set_actual_outcome(poll.id, option.id):
            return ReconcileOutcome(poll_id=poll_id, outcome_status=ReconcileStatus.SKIPPED)

        bonus = settings.ACTUAL_OUTCOME_BONUS
        votes = await self.votes.list_by_poll(poll.id)
        correct_voters = 0
        for vote in votes:
            if vote.option_id != option.id:
                continue
            await self.votes.add_points(vote.id, bonus)
            await self.users.award_points(vote.user_id, bonus, increment_correct=False)
            await self.points.append(
                user_id=vote.user_id,
                amount=bonus,
                points_type=PointsType.ACTUAL_OUTCOME_BONUS,
                description="Matched actual outcome",
                poll_id=poll.id,
            )
            correct_voters += 1

        logger.info(f"Actual outcome for poll {poll_id}: {option.label} ({correct_voters}/{len(votes)} matched)")
        return ReconcileOutcome(
            poll_id=poll_id,
            outcome_status=ReconcileStatus.ACTUAL_RESOLVED,
            correct_voters=correct_voters,
            total_voters=len(votes),
            outcome_label=option.label,
        )
