"""
Tests for the election lifecycle controller.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from core.exceptions import (
    ElectionNotFound,
    ElectionNotRunning,
    IntegrityViolation,
    InvalidLifecycleTransition,
)
from models.election import ElectionStatus, as_utc, utcnow
from services.election_lifecycle import (
    ElectionLifecycleController,
    can_transition,
    ensure_accepting_votes,
    ensure_structure_editable,
)


@pytest.mark.unit
class TestTransitionRules:
    @pytest.mark.parametrize(
        "current, target",
        [
            (ElectionStatus.DRAFT, ElectionStatus.RUNNING),
            (ElectionStatus.RUNNING, ElectionStatus.CLOSED),
            (ElectionStatus.CLOSED, ElectionStatus.ARCHIVED),
        ],
    )
    def test_forward_steps_allowed(self, current, target) -> None:
        assert can_transition(current, target) is True

    @pytest.mark.parametrize(
        "current, target",
        [
            (ElectionStatus.DRAFT, ElectionStatus.CLOSED),
            (ElectionStatus.DRAFT, ElectionStatus.ARCHIVED),
            (ElectionStatus.RUNNING, ElectionStatus.DRAFT),
            (ElectionStatus.CLOSED, ElectionStatus.RUNNING),
            (ElectionStatus.ARCHIVED, ElectionStatus.CLOSED),
            (ElectionStatus.RUNNING, ElectionStatus.RUNNING),
        ],
    )
    def test_skips_and_reversals_refused(self, current, target) -> None:
        assert can_transition(current, target) is False

    def test_structure_editable_only_in_draft(self) -> None:
        ensure_structure_editable(SimpleNamespace(status="DRAFT"))
        with pytest.raises(InvalidLifecycleTransition) as exc_info:
            ensure_structure_editable(SimpleNamespace(status="RUNNING"))
        assert exc_info.value.reason == "STRUCTURE_FROZEN"

    def test_accepting_votes_only_when_running(self) -> None:
        ensure_accepting_votes(SimpleNamespace(status="RUNNING"))
        with pytest.raises(ElectionNotRunning):
            ensure_accepting_votes(SimpleNamespace(status="CLOSED"))


@pytest.mark.unit
class TestTransitionElection:
    async def test_full_lifecycle_stamps_each_step(self, lifecycle, draft_election) -> None:
        election_id = draft_election.election.id

        running = await lifecycle.transition_election(election_id, ElectionStatus.RUNNING)
        assert running.status == ElectionStatus.RUNNING.value
        assert running.opened_at is not None

        closed = await lifecycle.transition_election(election_id, ElectionStatus.CLOSED)
        assert closed.status == ElectionStatus.CLOSED.value
        assert closed.closed_at is not None
        assert as_utc(closed.closed_at) >= as_utc(closed.opened_at)

        archived = await lifecycle.transition_election(election_id, ElectionStatus.ARCHIVED)
        assert archived.status == ElectionStatus.ARCHIVED.value
        assert archived.archived_at is not None

    async def test_closed_election_cannot_reopen(self, lifecycle, running_election) -> None:
        election_id = running_election.election.id
        await lifecycle.transition_election(election_id, ElectionStatus.CLOSED)

        with pytest.raises(InvalidLifecycleTransition) as exc_info:
            await lifecycle.transition_election(election_id, ElectionStatus.RUNNING)

        assert exc_info.value.reason == "CLOSED_TO_RUNNING"

    async def test_draft_cannot_skip_to_closed(self, lifecycle, draft_election) -> None:
        with pytest.raises(InvalidLifecycleTransition):
            await lifecycle.transition_election(draft_election.election.id, ElectionStatus.CLOSED)

    async def test_opening_requires_a_position(self, lifecycle, election_service) -> None:
        election = await election_service.create_election("Empty Ballot")

        with pytest.raises(InvalidLifecycleTransition) as exc_info:
            await lifecycle.transition_election(election.id, ElectionStatus.RUNNING)

        assert exc_info.value.reason == "NO_POSITIONS"

    async def test_opening_requires_candidates_everywhere(self, lifecycle, election_service) -> None:
        election = await election_service.create_election("Half Ready")
        chair = await election_service.add_position(election.id, "Chair")
        await election_service.add_position(election.id, "Treasurer")
        await election_service.add_candidate(chair.id, "Candidate C")

        with pytest.raises(InvalidLifecycleTransition) as exc_info:
            await lifecycle.transition_election(election.id, ElectionStatus.RUNNING)

        assert exc_info.value.reason == "POSITION_WITHOUT_CANDIDATES"
        assert "Treasurer" in exc_info.value.message

    async def test_opening_after_window_ended_refused(self, lifecycle, election_service) -> None:
        election = await election_service.create_election(
            "Missed Window",
            starts_at=utcnow() - timedelta(days=2),
            ends_at=utcnow() - timedelta(days=1),
        )
        position = await election_service.add_position(election.id, "Chair")
        await election_service.add_candidate(position.id, "Candidate C")

        with pytest.raises(InvalidLifecycleTransition) as exc_info:
            await lifecycle.transition_election(election.id, ElectionStatus.RUNNING)

        assert exc_info.value.reason == "VOTING_WINDOW_ENDED"

    async def test_unknown_election(self, lifecycle) -> None:
        with pytest.raises(ElectionNotFound):
            await lifecycle.transition_election(31337, ElectionStatus.RUNNING)

    async def test_closing_publishes_final_results(
        self, session_factory, running_election, recorder, voters
    ) -> None:
        notifier = AsyncMock()
        controller = ElectionLifecycleController(session_factory, notifier=notifier)
        e = running_election
        await recorder.cast_ballot(voters.alice.id, e.president.id, [e.a.id])

        await controller.transition_election(e.election.id, ElectionStatus.CLOSED)

        notifier.results_published.assert_awaited_once()
        results = notifier.results_published.call_args[0][0]
        assert results.is_final is True
        assert results.positions[0].winners == [e.a.id]

    async def test_opening_does_not_publish(self, session_factory, draft_election) -> None:
        notifier = AsyncMock()
        controller = ElectionLifecycleController(session_factory, notifier=notifier)

        await controller.transition_election(draft_election.election.id, ElectionStatus.RUNNING)

        notifier.results_published.assert_not_awaited()

    async def test_integrity_violation_halts_publication_but_not_close(
        self, session_factory, running_election
    ) -> None:
        notifier = AsyncMock()
        tally = AsyncMock()
        tally.compute_results.side_effect = IntegrityViolation("counts do not reconcile")
        controller = ElectionLifecycleController(session_factory, notifier=notifier, tally=tally)

        closed = await controller.transition_election(running_election.election.id, ElectionStatus.CLOSED)

        assert closed.status == ElectionStatus.CLOSED.value
        notifier.results_published.assert_not_awaited()
