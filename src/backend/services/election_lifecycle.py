"""
Election lifecycle controller.

Elections move strictly forward, one step at a time:

    DRAFT -> RUNNING -> CLOSED -> ARCHIVED

There is no way back and no skipping. Structure (positions, candidates) is
editable only in DRAFT, votes are accepted only in RUNNING and results are
final once CLOSED.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import (
    ElectionError,
    ElectionNotFound,
    ElectionNotRunning,
    IntegrityViolation,
    InvalidLifecycleTransition,
)
from db.session import store_transaction
from models.election import Election, ElectionStatus, as_utc, utcnow
from repositories.election_repository import ElectionRepository
from services.notification_service import ResultsNotifier
from services.tally_service import TallyAggregator

logger = structlog.get_logger(__name__)

NEXT_STATUS = {
    ElectionStatus.DRAFT: ElectionStatus.RUNNING,
    ElectionStatus.RUNNING: ElectionStatus.CLOSED,
    ElectionStatus.CLOSED: ElectionStatus.ARCHIVED,
}

# Which timestamp column records entry into each state
STATUS_STAMPS = {
    ElectionStatus.RUNNING: "opened_at",
    ElectionStatus.CLOSED: "closed_at",
    ElectionStatus.ARCHIVED: "archived_at",
}


def can_transition(current: ElectionStatus, target: ElectionStatus) -> bool:
    return NEXT_STATUS.get(current) == target


def ensure_structure_editable(election: Election) -> None:
    """Positions and candidates may only change while DRAFT."""
    if election.status != ElectionStatus.DRAFT.value:
        raise InvalidLifecycleTransition(
            f"Election structure is frozen once {election.status}",
            reason="STRUCTURE_FROZEN",
        )


def ensure_accepting_votes(election: Election) -> None:
    if election.status != ElectionStatus.RUNNING.value:
        raise ElectionNotRunning(f"Election is {election.status}, not accepting votes")


class ElectionLifecycleController:
    """Moves elections through their lifecycle and publishes final results."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        notifier: Optional[ResultsNotifier] = None,
        tally: Optional[TallyAggregator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or ResultsNotifier()
        self.tally = tally or TallyAggregator(session_factory, clock=clock)
        self.clock = clock

    async def transition_election(
        self,
        election_id: int,
        target: ElectionStatus,
        actor_id: Optional[int] = None,
    ) -> Election:
        """
        Move an election to ``target``.

        Closing publishes the final results through the notifier after the
        close has committed.

        Raises:
            ElectionNotFound: unknown election
            InvalidLifecycleTransition: not the next state, the election is
                not ready to open, or another transition won the race
            StoreUnavailable: nothing changed, safe to retry
        """
        target = ElectionStatus(target)

        async with store_transaction(self.session_factory, "transition_election") as db:
            repo = ElectionRepository(db)
            election = await repo.get_for_update(election_id)
            if not election:
                raise ElectionNotFound(f"Election {election_id} not found")

            current = ElectionStatus(election.status)
            if not can_transition(current, target):
                raise InvalidLifecycleTransition(
                    f"Cannot move election from {current.value} to {target.value}",
                    reason=f"{current.value}_TO_{target.value}",
                )

            now = self.clock()
            if target == ElectionStatus.RUNNING:
                await self._ensure_ready_to_open(repo, election, now)

            moved = await repo.transition_status(
                election.id,
                current,
                target,
                **{STATUS_STAMPS[target]: now, "updated_at": now},
            )
            if not moved:
                raise InvalidLifecycleTransition(
                    "Election changed state concurrently, reload and retry",
                    reason="CONCURRENT_TRANSITION",
                )
            await db.refresh(election)

        logger.info(
            "election_transitioned",
            election_id=election_id,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor_id,
        )

        if target == ElectionStatus.CLOSED:
            await self._publish_results(election_id)

        return election

    async def _ensure_ready_to_open(self, repo: ElectionRepository, election: Election, now: datetime) -> None:
        candidate_counts = await repo.get_position_candidate_counts(election.id)
        if not candidate_counts:
            raise InvalidLifecycleTransition(
                "An election needs at least one position before it can open",
                reason="NO_POSITIONS",
            )

        empty = sorted(name for name, count in candidate_counts.items() if count == 0)
        if empty:
            raise InvalidLifecycleTransition(
                f"Positions without candidates: {', '.join(empty)}",
                reason="POSITION_WITHOUT_CANDIDATES",
            )

        ends_at = as_utc(election.ends_at)
        if ends_at is not None and ends_at < now:
            raise InvalidLifecycleTransition(
                "The voting window has already ended",
                reason="VOTING_WINDOW_ENDED",
            )

    async def _publish_results(self, election_id: int) -> None:
        """Compute and announce final results. Never fails the close."""
        try:
            results = await self.tally.compute_results(election_id)
        except IntegrityViolation as e:
            logger.critical(
                "results_publication_halted",
                election_id=election_id,
                error=e.message,
            )
            return
        except ElectionError as e:
            logger.error(
                "results_publication_failed",
                election_id=election_id,
                error=e.message,
                reason=e.reason,
            )
            return

        await self.notifier.results_published(results)
