"""
Tests for the vote recorder.

Runs against a real SQLite ledger so the allowance claim, the unique
constraints and transaction rollback are exercised for real.
"""

import asyncio
import sqlite3
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from core.exceptions import (
    AlreadyVoted,
    BallotRejectionReason,
    ElectionNotRunning,
    IneligibilityReason,
    InvalidLifecycleTransition,
    NotEligible,
    RejectedBallot,
    StoreUnavailable,
    VoteAlreadyInvalidated,
)
from models.election import ElectionCategory, ElectionStatus, utcnow
from models.vote import BallotAllowance, Vote
from repositories.vote_repository import VoteRepository


async def count_votes(session_factory, voter_id: int, position_id: int) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Vote.id)).where(Vote.voter_id == voter_id, Vote.position_id == position_id)
        )
        return result.scalar()


async def allowance_used(session_factory, voter_id: int, position_id: int) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(BallotAllowance.choices_used).where(
                BallotAllowance.voter_id == voter_id,
                BallotAllowance.position_id == position_id,
            )
        )
        return result.scalar_one_or_none() or 0


@pytest.mark.unit
class TestCastBallot:
    """Single-voter ballot scenarios."""

    async def test_single_choice_position_accepts_one_vote(self, recorder, running_election, voters) -> None:
        votes = await recorder.cast_ballot(voters.alice.id, running_election.president.id, [running_election.a.id])

        assert len(votes) == 1
        assert votes[0].candidate_id == running_election.a.id
        assert votes[0].id is not None

    async def test_second_ballot_for_single_choice_position_is_already_voted(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        president = running_election.president
        await recorder.cast_ballot(voters.alice.id, president.id, [running_election.a.id])

        with pytest.raises(AlreadyVoted) as exc_info:
            await recorder.cast_ballot(voters.alice.id, president.id, [running_election.b.id])

        assert exc_info.value.reason == IneligibilityReason.CHOICE_LIMIT_REACHED.value
        assert await count_votes(session_factory, voters.alice.id, president.id) == 1

    async def test_multi_choice_ballot_records_every_selection(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        senate = running_election.senate
        votes = await recorder.cast_ballot(
            voters.alice.id, senate.id, [running_election.x.id, running_election.y.id]
        )

        assert [v.candidate_id for v in votes] == [running_election.x.id, running_election.y.id]
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 2
        assert await allowance_used(session_factory, voters.alice.id, senate.id) == 2

        with pytest.raises(AlreadyVoted):
            await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.z.id])

    async def test_choices_can_be_spread_over_several_ballots(self, recorder, running_election, voters) -> None:
        senate = running_election.senate
        await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.x.id])
        await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.y.id])

        with pytest.raises(AlreadyVoted):
            await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.z.id])

    async def test_ballot_larger_than_remaining_choices_is_rejected_whole(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        senate = running_election.senate
        await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.x.id])

        with pytest.raises(RejectedBallot) as exc_info:
            await recorder.cast_ballot(
                voters.alice.id, senate.id, [running_election.y.id, running_election.z.id]
            )

        assert exc_info.value.reason == BallotRejectionReason.CHOICE_LIMIT_EXCEEDED.value
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 1

    async def test_over_limit_ballot_records_nothing(self, recorder, running_election, voters, session_factory) -> None:
        senate = running_election.senate
        with pytest.raises(RejectedBallot) as exc_info:
            await recorder.cast_ballot(
                voters.alice.id,
                senate.id,
                [running_election.x.id, running_election.y.id, running_election.z.id],
            )

        assert exc_info.value.reason == BallotRejectionReason.CHOICE_LIMIT_EXCEEDED.value
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 0
        assert await allowance_used(session_factory, voters.alice.id, senate.id) == 0

    @pytest.mark.parametrize(
        "selection, reason",
        [
            ("empty", BallotRejectionReason.EMPTY_SELECTION),
            ("duplicate", BallotRejectionReason.DUPLICATE_CANDIDATE),
            ("foreign", BallotRejectionReason.CANDIDATE_NOT_IN_POSITION),
        ],
    )
    async def test_malformed_ballots_are_rejected(
        self, recorder, running_election, voters, session_factory, selection, reason
    ) -> None:
        senate = running_election.senate
        candidate_ids = {
            "empty": [],
            "duplicate": [running_election.x.id, running_election.x.id],
            "foreign": [running_election.a.id],
        }[selection]

        with pytest.raises(RejectedBallot) as exc_info:
            await recorder.cast_ballot(voters.alice.id, senate.id, candidate_ids)

        assert exc_info.value.reason == reason.value
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 0

    async def test_unverified_voter_is_not_eligible(self, recorder, running_election, voters) -> None:
        with pytest.raises(NotEligible) as exc_info:
            await recorder.cast_ballot(voters.carol.id, running_election.president.id, [running_election.a.id])

        assert not isinstance(exc_info.value, AlreadyVoted)
        assert exc_info.value.reason == IneligibilityReason.UNVERIFIED.value

    async def test_admin_cannot_cast_ballots(self, recorder, running_election, voters, session_factory) -> None:
        president = running_election.president

        with pytest.raises(NotEligible) as exc_info:
            await recorder.cast_ballot(voters.admin.id, president.id, [running_election.a.id])

        assert exc_info.value.reason == IneligibilityReason.NOT_A_VOTER.value
        assert await count_votes(session_factory, voters.admin.id, president.id) == 0

    async def test_identity_layer_verification_overrides_record(self, recorder, running_election, voters) -> None:
        with pytest.raises(NotEligible) as exc_info:
            await recorder.cast_ballot(
                voters.alice.id,
                running_election.president.id,
                [running_election.a.id],
                email_verified=False,
            )

        assert exc_info.value.reason == IneligibilityReason.UNVERIFIED.value

    async def test_draft_election_does_not_accept_votes(self, recorder, draft_election, voters) -> None:
        with pytest.raises(ElectionNotRunning) as exc_info:
            await recorder.cast_ballot(voters.alice.id, draft_election.president.id, [draft_election.a.id])

        assert isinstance(exc_info.value, NotEligible)
        assert isinstance(exc_info.value, InvalidLifecycleTransition)
        assert exc_info.value.reason == IneligibilityReason.ELECTION_NOT_RUNNING.value

    async def test_closed_election_does_not_accept_votes(self, recorder, running_election, voters, lifecycle) -> None:
        await lifecycle.transition_election(running_election.election.id, ElectionStatus.CLOSED)

        with pytest.raises(ElectionNotRunning):
            await recorder.cast_ballot(voters.alice.id, running_election.president.id, [running_election.a.id])

    async def test_department_election_rejects_other_departments(
        self, recorder, election_service, lifecycle, voters
    ) -> None:
        election = await election_service.create_election(
            "Engineering Society",
            category=ElectionCategory.DEPARTMENT,
            department_id=voters.engineering.id,
        )
        chair = await election_service.add_position(election.id, "Chair")
        candidate = await election_service.add_candidate(chair.id, "Candidate E")
        await lifecycle.transition_election(election.id, ElectionStatus.RUNNING)

        with pytest.raises(NotEligible) as exc_info:
            await recorder.cast_ballot(voters.dave.id, chair.id, [candidate.id])
        assert exc_info.value.reason == IneligibilityReason.DEPARTMENT_MISMATCH.value

        votes = await recorder.cast_ballot(voters.alice.id, chair.id, [candidate.id])
        assert len(votes) == 1

    async def test_votes_outside_window_are_refused(self, recorder, election_service, lifecycle, voters) -> None:
        election = await election_service.create_election(
            "Future Referendum",
            starts_at=utcnow() + timedelta(days=1),
            ends_at=utcnow() + timedelta(days=2),
        )
        question = await election_service.add_position(election.id, "Question")
        candidate = await election_service.add_candidate(question.id, "Yes")
        await lifecycle.transition_election(election.id, ElectionStatus.RUNNING)

        with pytest.raises(NotEligible) as exc_info:
            await recorder.cast_ballot(voters.alice.id, question.id, [candidate.id])

        assert exc_info.value.reason == IneligibilityReason.OUTSIDE_VOTING_WINDOW.value


@pytest.mark.unit
class TestCastBallotFailures:
    """Atomicity and concurrency of ballots."""

    async def test_store_failure_mid_ballot_leaves_no_rows(
        self, recorder, running_election, voters, session_factory, monkeypatch
    ) -> None:
        async def fail_after_first_row(self, voter_id, position_id, candidate_ids):
            self.db.add(Vote(voter_id=voter_id, position_id=position_id, candidate_id=candidate_ids[0]))
            await self.db.flush()
            raise OperationalError("INSERT INTO votes", {}, sqlite3.OperationalError("disk I/O error"))

        monkeypatch.setattr(VoteRepository, "create_votes", fail_after_first_row)
        senate = running_election.senate

        with pytest.raises(StoreUnavailable) as exc_info:
            await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.x.id, running_election.y.id])

        assert exc_info.value.retryable is True
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 0
        assert await allowance_used(session_factory, voters.alice.id, senate.id) == 0

        monkeypatch.undo()
        votes = await recorder.cast_ballot(voters.alice.id, senate.id, [running_election.x.id, running_election.y.id])
        assert len(votes) == 2

    async def test_concurrent_ballots_cannot_exceed_single_choice(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        president = running_election.president
        choices = [running_election.a.id, running_election.b.id] * 3

        outcomes = await asyncio.gather(
            *(recorder.cast_ballot(voters.alice.id, president.id, [cid]) for cid in choices),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, list)]
        failures = [o for o in outcomes if not isinstance(o, list)]
        assert len(successes) == 1
        assert all(isinstance(f, AlreadyVoted) for f in failures)
        assert await count_votes(session_factory, voters.alice.id, president.id) == 1

    async def test_concurrent_ballots_respect_multi_choice_limit(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        senate = running_election.senate
        choices = [running_election.x.id, running_election.y.id, running_election.z.id, running_election.x.id]

        outcomes = await asyncio.gather(
            *(recorder.cast_ballot(voters.bob.id, senate.id, [cid]) for cid in choices),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, list)]
        failures = [o for o in outcomes if not isinstance(o, list)]
        assert len(successes) == 2
        assert all(isinstance(f, AlreadyVoted) for f in failures)
        assert await count_votes(session_factory, voters.bob.id, senate.id) == 2
        assert await allowance_used(session_factory, voters.bob.id, senate.id) == 2

    async def test_concurrent_first_ballots_for_different_candidates_both_count(
        self, recorder, running_election, voters, session_factory
    ) -> None:
        senate = running_election.senate

        outcomes = await asyncio.gather(
            recorder.cast_ballot(voters.alice.id, senate.id, [running_election.x.id]),
            recorder.cast_ballot(voters.alice.id, senate.id, [running_election.y.id]),
            return_exceptions=True,
        )

        assert all(isinstance(o, list) for o in outcomes)
        assert await count_votes(session_factory, voters.alice.id, senate.id) == 2
        assert await allowance_used(session_factory, voters.alice.id, senate.id) == 2

    async def test_allowance_row_is_created_once(self, running_election, voters, session_factory) -> None:
        senate = running_election.senate

        async with session_factory() as session:
            async with session.begin():
                repo = VoteRepository(session)
                await repo.ensure_allowance(voters.alice.id, senate.id)
                await repo.ensure_allowance(voters.alice.id, senate.id)
                assert await repo.claim_allowance(voters.alice.id, senate.id, choices=1, max_choices=2) is True
                assert await repo.claim_allowance(voters.alice.id, senate.id, choices=1, max_choices=2) is True
                assert await repo.claim_allowance(voters.alice.id, senate.id, choices=1, max_choices=2) is False

        async with session_factory() as session:
            rows = await session.execute(
                select(func.count(BallotAllowance.id)).where(BallotAllowance.voter_id == voters.alice.id)
            )
            assert rows.scalar() == 1
        assert await allowance_used(session_factory, voters.alice.id, senate.id) == 2


@pytest.mark.unit
class TestInvalidateVote:
    """Invalidation keeps the ledger row but excludes it."""

    async def test_invalidation_returns_the_choice(self, recorder, running_election, voters, session_factory) -> None:
        president = running_election.president
        [vote] = await recorder.cast_ballot(voters.alice.id, president.id, [running_election.a.id])

        invalidation = await recorder.invalidate_vote(vote.id, "cast under a shared account", voters.admin.id)

        assert invalidation.vote_id == vote.id
        assert invalidation.invalidated_by_id == voters.admin.id
        assert await count_votes(session_factory, voters.alice.id, president.id) == 1
        assert await allowance_used(session_factory, voters.alice.id, president.id) == 0

        votes = await recorder.cast_ballot(voters.alice.id, president.id, [running_election.b.id])
        assert len(votes) == 1

    async def test_invalidating_twice_fails(self, recorder, running_election, voters) -> None:
        [vote] = await recorder.cast_ballot(voters.alice.id, running_election.president.id, [running_election.a.id])
        await recorder.invalidate_vote(vote.id, "duplicate identity", voters.admin.id)

        with pytest.raises(VoteAlreadyInvalidated):
            await recorder.invalidate_vote(vote.id, "duplicate identity", voters.admin.id)

    async def test_closed_results_cannot_be_changed(self, recorder, running_election, voters, lifecycle) -> None:
        [vote] = await recorder.cast_ballot(voters.alice.id, running_election.president.id, [running_election.a.id])
        await lifecycle.transition_election(running_election.election.id, ElectionStatus.CLOSED)

        with pytest.raises(InvalidLifecycleTransition):
            await recorder.invalidate_vote(vote.id, "too late", voters.admin.id)


@pytest.mark.unit
class TestBallotStatus:
    async def test_status_reports_remaining_choices(self, recorder, running_election, voters) -> None:
        await recorder.cast_ballot(voters.alice.id, running_election.senate.id, [running_election.x.id])

        status = await recorder.ballot_status(voters.alice.id, running_election.election.id)

        by_name = {p.name: p for p in status.positions}
        assert by_name["President"].votes_cast == 0
        assert by_name["President"].remaining == 1
        assert by_name["Senate"].votes_cast == 1
        assert by_name["Senate"].remaining == 1
        assert status.completed is False

    async def test_status_completed_when_every_choice_used(self, recorder, running_election, voters) -> None:
        await recorder.cast_ballot(voters.alice.id, running_election.president.id, [running_election.a.id])
        await recorder.cast_ballot(
            voters.alice.id, running_election.senate.id, [running_election.x.id, running_election.z.id]
        )

        status = await recorder.ballot_status(voters.alice.id, running_election.election.id)

        assert status.completed is True
