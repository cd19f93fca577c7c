"""
Tests for the closing sweep.

Covers consensus selection, percentages, scoring, the accuracy and ledger
laws, anonymous tallies with receipt reconciliation, and isolation between
polls.
"""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from core.exceptions import ValidationError
from models.points_history import PointsHistory
from models.poll import Poll, PollOption, PollStatus
from models.user import User
from models.vote import Vote
from schemas.poll import CloseStatus
from services.poll_resolution import PollResolutionEngine, select_consensus, vote_percentage
from services.vocdoni_client import ElectionTally


async def _close(session_maker, now, tally=None, **kwargs):
    async with session_maker() as session:
        return await PollResolutionEngine(session, tally).close_due_polls(now=now, **kwargs)


async def _load_poll(session_maker, poll_id):
    from repositories.poll_repository import PollRepository

    async with session_maker() as session:
        return await PollRepository(session).get_by_id(poll_id)


class TestConsensusHelpers:
    def test_strictly_greatest_wins(self):
        options = [PollOption(id="a", display_order=1), PollOption(id="b", display_order=2)]
        assert select_consensus(options, {"a": 1, "b": 3}).id == "b"

    def test_tie_goes_to_first_in_display_order(self):
        options = [PollOption(id="a", display_order=1), PollOption(id="b", display_order=2)]
        assert select_consensus(options, {"a": 2, "b": 2}).id == "a"

    def test_no_votes_no_consensus(self):
        options = [PollOption(id="a", display_order=1)]
        assert select_consensus(options, {"a": 0}) is None

    def test_percentages(self):
        assert vote_percentage(1, 3) == 33.33
        assert vote_percentage(2, 3) == 66.67
        assert vote_percentage(0, 0) == 0.0


class TestCloseDuePolls:
    """Public polls."""

    async def test_majority_consensus_is_scored(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        red, blue = poll.ordered_options
        red_voters = await cast_votes(poll, [red.id, red.id, red.id])
        blue_voters = await cast_votes(poll, [blue.id])

        results = await _close(session_maker, now + timedelta(days=1))

        assert len(results) == 1
        outcome = results[0]
        assert outcome.outcome_status == CloseStatus.RESOLVED
        assert outcome.consensus_label == "Red"
        assert outcome.total_votes == 4
        assert outcome.correct_voters == 3

        resolved = await _load_poll(session_maker, poll.id)
        assert resolved.status == PollStatus.RESOLVED.value
        assert resolved.crowd_consensus_option_id == red.id
        assert resolved.winning_option_id == red.id
        assert resolved.resolved_at is not None
        stored_red, stored_blue = resolved.ordered_options
        assert stored_red.is_winner and not stored_blue.is_winner
        assert stored_red.vote_percentage == 75.0
        assert stored_blue.vote_percentage == 25.0

        async with session_maker() as session:
            for voter in red_voters:
                user = await session.get(User, voter.id)
                assert user.swarm_points == 6000
                assert user.correct_predictions == 1
                assert user.accuracy_score == pytest.approx(1.0)
            loser = await session.get(User, blue_voters[0].id)
            assert loser.swarm_points == 1000
            assert loser.correct_predictions == 0
            assert loser.accuracy_score == pytest.approx(0.0)

            votes = (await session.execute(select(Vote).where(Vote.poll_id == poll.id))).scalars().all()
            for vote in votes:
                assert vote.is_correct == (vote.option_id == red.id)
                assert vote.matched_consensus == vote.is_correct
                assert vote.points_earned == (6000 if vote.is_correct else 1000)

    async def test_ledger_matches_balances(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        red, blue = poll.ordered_options
        voters = await cast_votes(poll, [red.id, blue.id, red.id])

        await _close(session_maker, now + timedelta(days=1))

        async with session_maker() as session:
            for voter in voters:
                user = await session.get(User, voter.id)
                ledger = (
                    await session.execute(
                        select(func.sum(PointsHistory.amount)).where(PointsHistory.user_id == voter.id)
                    )
                ).scalar()
                assert user.swarm_points == ledger

            bonuses = (
                await session.execute(select(PointsHistory).where(PointsHistory.type == "consensus_bonus"))
            ).scalars().all()
        assert len(bonuses) == 2
        assert all(b.description == "Matched crowd consensus on: Which colour wins?" for b in bonuses)

    async def test_accuracy_uses_all_predictions(self, session_maker, create_user, create_poll, now):
        from services.vote_service import VoteService

        user = await create_user(total_predictions=2, correct_predictions=0)
        poll = await create_poll()
        red = poll.ordered_options[0]
        async with session_maker() as session:
            await VoteService(session).submit_vote(user.auth_uid, poll.id, red.id, "medium", now=now)

        await _close(session_maker, now + timedelta(days=1))

        async with session_maker() as session:
            stored = await session.get(User, user.id)
        assert stored.total_predictions == 3
        assert stored.correct_predictions == 1
        assert stored.accuracy_score == pytest.approx(0.3333)

    async def test_wrong_vote_lowers_accuracy(self, session_maker, create_user, create_poll, now):
        from services.vote_service import VoteService

        user = await create_user()
        others = [await create_user(), await create_user()]

        first = await create_poll()
        async with session_maker() as session:
            await VoteService(session).submit_vote(
                user.auth_uid, first.id, first.ordered_options[0].id, "medium", now=now
            )
        await _close(session_maker, now + timedelta(days=1), force_poll_id=first.id)

        second = await create_poll()
        red, blue = second.ordered_options
        async with session_maker() as session:
            await VoteService(session).submit_vote(user.auth_uid, second.id, blue.id, "medium", now=now)
        for other in others:
            async with session_maker() as session:
                await VoteService(session).submit_vote(other.auth_uid, second.id, red.id, "medium", now=now)
        await _close(session_maker, now + timedelta(days=1), force_poll_id=second.id)

        async with session_maker() as session:
            stored = await session.get(User, user.id)
        assert stored.correct_predictions == 1
        assert stored.total_predictions == 2
        assert stored.accuracy_score == pytest.approx(0.5)

    async def test_tie_breaks_to_first_option(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll(labels=("Red", "Blue", "Green"))
        red, blue, green = poll.ordered_options
        await cast_votes(poll, [blue.id, green.id, green.id, blue.id])

        results = await _close(session_maker, now + timedelta(days=1))

        assert results[0].consensus_label == "Blue"
        resolved = await _load_poll(session_maker, poll.id)
        assert [o.is_winner for o in resolved.ordered_options] == [False, True, False]
        assert sum(o.vote_percentage for o in resolved.ordered_options) == pytest.approx(100.0, abs=0.02)

    async def test_poll_without_votes_is_closed(self, session_maker, create_poll, now):
        poll = await create_poll()

        results = await _close(session_maker, now + timedelta(days=1))

        assert results[0].outcome_status == CloseStatus.CLOSED_NO_VOTES
        closed = await _load_poll(session_maker, poll.id)
        assert closed.status == PollStatus.CLOSED.value
        assert closed.resolved_at is None
        assert closed.crowd_consensus_option_id is None
        assert not any(o.is_winner for o in closed.ordered_options)

    async def test_open_polls_are_left_alone(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        await cast_votes(poll, [poll.ordered_options[0].id])

        results = await _close(session_maker, now)

        assert results == []
        assert (await _load_poll(session_maker, poll.id)).status == PollStatus.ACTIVE.value

    async def test_force_close_ignores_deadline(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        other = await create_poll(labels=("Yes", "No"))
        await cast_votes(poll, [poll.ordered_options[1].id])

        results = await _close(session_maker, now, force_poll_id=poll.id)

        assert [r.poll_id for r in results] == [poll.id]
        assert results[0].consensus_label == "Blue"
        assert (await _load_poll(session_maker, other.id)).status == PollStatus.ACTIVE.value

    async def test_force_close_rejects_bad_id(self, session_maker, now):
        with pytest.raises(ValidationError):
            await _close(session_maker, now, force_poll_id="poll-1")

    async def test_second_sweep_does_not_rescore(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        voters = await cast_votes(poll, [poll.ordered_options[0].id])

        await _close(session_maker, now + timedelta(days=1))
        second = await _close(session_maker, now + timedelta(days=1), force_poll_id=poll.id)

        assert second == []
        async with session_maker() as session:
            user = await session.get(User, voters[0].id)
        assert user.swarm_points == 6000
        assert user.correct_predictions == 1

    async def test_lost_transition_race_is_skipped(self, session_maker, create_poll, cast_votes, now):
        poll = await create_poll()
        voters = await cast_votes(poll, [poll.ordered_options[0].id])

        # Another sweep resolved the poll between selection and transition
        with patch(
            "repositories.poll_repository.PollRepository.mark_resolved",
            new=AsyncMock(return_value=False),
        ):
            results = await _close(session_maker, now + timedelta(days=1))

        assert results[0].outcome_status == CloseStatus.SKIPPED
        async with session_maker() as session:
            user = await session.get(User, voters[0].id)
        assert user.swarm_points == 1000

    async def test_failure_is_isolated_per_poll(self, session_maker, create_poll, cast_votes, now):
        first = await create_poll(closes_at=now + timedelta(hours=1))
        second = await create_poll(labels=("Yes", "No"), closes_at=now + timedelta(hours=2))
        await cast_votes(first, [first.ordered_options[0].id])
        await cast_votes(second, [second.ordered_options[1].id])

        original = PollResolutionEngine._close_poll

        async def flaky(self, poll_id, when):
            if poll_id == first.id:
                raise RuntimeError("storage hiccup")
            return await original(self, poll_id, when)

        with patch.object(PollResolutionEngine, "_close_poll", flaky):
            results = await _close(session_maker, now + timedelta(days=1))

        statuses = {r.poll_id: r.outcome_status for r in results}
        assert statuses == {first.id: CloseStatus.ERROR, second.id: CloseStatus.RESOLVED}
        assert (await _load_poll(session_maker, first.id)).status == PollStatus.ACTIVE.value
        assert next(r for r in results if r.poll_id == first.id).error == "Failed to close poll"


class TestCloseAnonymousPolls:
    """Polls tallied by the anonymous election."""

    async def test_tally_overwrites_counts_and_receipts_resolve(
        self, session_maker, create_poll, cast_votes, tally, now
    ):
        poll = await create_poll(vocdoni_election_id="election-0001")
        red, blue = poll.ordered_options
        voters = await cast_votes(poll, [blue.id, blue.id, red.id], tally=tally)
        tally.results["election-0001"] = ElectionTally(counts=[1, 2], total=3)

        results = await _close(session_maker, now + timedelta(days=1), tally=tally)

        outcome = results[0]
        assert outcome.outcome_status == CloseStatus.RESOLVED
        assert outcome.anonymous
        assert outcome.consensus_label == "Blue"
        assert outcome.correct_voters == 2
        assert not outcome.tally_discrepancy

        resolved = await _load_poll(session_maker, poll.id)
        assert [o.vote_count for o in resolved.ordered_options] == [1, 2]
        assert resolved.total_votes == 3

        async with session_maker() as session:
            votes = {v.user_id: v for v in (await session.execute(select(Vote))).scalars().all()}
            assert votes[voters[0].id].option_id == blue.id
            assert votes[voters[2].id].option_id == red.id
            winner = await session.get(User, voters[0].id)
        assert winner.swarm_points == 6000

    async def test_unresolvable_receipts_are_not_scored(self, session_maker, create_poll, cast_votes, tally, now):
        poll = await create_poll(vocdoni_election_id="election-0001")
        red, blue = poll.ordered_options
        voters = await cast_votes(poll, [red.id, red.id, blue.id], tally=tally)
        tally.results["election-0001"] = ElectionTally(counts=[2, 1], total=3)
        tally.failing_receipts.add("receipt-1")
        tally.receipts["receipt-2"] = 7  # out of range

        results = await _close(session_maker, now + timedelta(days=1), tally=tally)

        outcome = results[0]
        assert outcome.consensus_label == "Red"
        assert outcome.correct_voters == 0
        assert outcome.tally_discrepancy

        async with session_maker() as session:
            votes = {v.user_id: v for v in (await session.execute(select(Vote))).scalars().all()}
        assert votes[voters[0].id].option_id is None
        assert votes[voters[1].id].option_id is None
        assert votes[voters[2].id].option_id == blue.id
        assert votes[voters[2].id].is_correct is False

    async def test_tally_outage_falls_back_to_stored_counts(
        self, session_maker, create_poll, cast_votes, tally, now
    ):
        poll = await create_poll(vocdoni_election_id="election-0001")
        await cast_votes(poll, [poll.ordered_options[0].id], tally=tally)
        tally.unavailable = True

        results = await _close(session_maker, now + timedelta(days=1), tally=tally)

        # Anonymous votes never touch option counts, so nothing to resolve on
        assert results[0].outcome_status == CloseStatus.CLOSED_NO_VOTES
        assert not results[0].tally_discrepancy

    async def test_discrepancy_between_tally_and_votes(self, session_maker, create_poll, cast_votes, tally, now):
        poll = await create_poll(vocdoni_election_id="election-0001")
        red, blue = poll.ordered_options
        await cast_votes(poll, [red.id], tally=tally)
        tally.results["election-0001"] = ElectionTally(counts=[3, 1], total=4)

        results = await _close(session_maker, now + timedelta(days=1), tally=tally)

        assert results[0].outcome_status == CloseStatus.RESOLVED
        assert results[0].tally_discrepancy
        assert results[0].total_votes == 4


class TestCloseUnknownPoll:
    async def test_forcing_unknown_poll_selects_nothing(self, session_maker, now):
        assert await _close(session_maker, now, force_poll_id=str(uuid.uuid4())) == []

    async def test_forced_poll_must_be_active(self, session_maker, create_poll, now):
        poll = await create_poll(status=PollStatus.UPCOMING)
        assert await _close(session_maker, now, force_poll_id=poll.id) == []
        stored = await _load_poll(session_maker, poll.id)
        assert isinstance(stored, Poll)
        assert stored.status == PollStatus.UPCOMING.value
