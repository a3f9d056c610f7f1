"""
Tally aggregator.

Results are computed from the votes ledger every time they are asked for;
no counter is ever stored. The whole tally comes from one SQL statement
(see ``VoteRepository.get_tally_rows``) so it reflects a single consistent
snapshot of the ledger even while ballots are being cast.

Before returning, each position's per-candidate counts are reconciled with
an independent count of the position's vote rows. A mismatch means the
ledger can no longer be trusted and raises IntegrityViolation instead of
publishing numbers.
"""

from datetime import datetime
from itertools import groupby
from typing import Any, Callable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ElectionNotFound, IntegrityViolation, ResultsUnavailable
from db.session import store_transaction
from models.election import Election, ElectionStatus, as_utc, utcnow
from repositories.election_repository import ElectionRepository
from repositories.vote_repository import VoteRepository
from schemas.results import CandidateResult, ElectionResults, PositionResult

logger = structlog.get_logger(__name__)

RESULTS_READABLE_STATUSES = {ElectionStatus.RUNNING.value, ElectionStatus.CLOSED.value}


def _ordering_key(row: Any) -> tuple:
    # Most votes first; equal counts fall back to candidate creation order
    return (-int(row.vote_count), as_utc(row.candidate_created_at), row.candidate_id)


def build_position_result(rows: Sequence[Any]) -> PositionResult:
    """
    Build one position's result from its tally rows.

    Raises:
        IntegrityViolation: candidate counts do not add up to the
            position's vote rows
    """
    first = rows[0]
    candidate_rows = sorted((r for r in rows if r.candidate_id is not None), key=_ordering_key)
    total_votes = sum(int(r.vote_count) for r in candidate_rows)
    position_rows = int(first.position_rows or 0)

    if total_votes != position_rows:
        logger.error(
            "tally_count_mismatch",
            position_id=first.position_id,
            candidate_total=total_votes,
            position_rows=position_rows,
        )
        raise IntegrityViolation(
            f"Vote counts for position {first.position_id} do not reconcile "
            f"({total_votes} counted, {position_rows} recorded)"
        )

    max_choices = int(first.max_choices)
    counts = [int(r.vote_count) for r in candidate_rows]

    # Seats go to the top max_choices candidates with at least one vote
    winners = [r.candidate_id for r in candidate_rows[:max_choices] if int(r.vote_count) > 0]
    tie_at_cutoff = (
        len(candidate_rows) > max_choices
        and counts[max_choices - 1] > 0
        and counts[max_choices - 1] == counts[max_choices]
    )

    candidates = [
        CandidateResult(
            candidate_id=r.candidate_id,
            display_name=r.display_name,
            photo_url=r.photo_url,
            vote_count=int(r.vote_count),
            vote_percentage=round(int(r.vote_count) * 100 / total_votes, 2) if total_votes else 0.0,
            rank=1 + sum(1 for c in counts if c > int(r.vote_count)),
            is_winner=r.candidate_id in winners,
        )
        for r in candidate_rows
    ]

    return PositionResult(
        position_id=first.position_id,
        name=first.position_name,
        max_choices=max_choices,
        total_votes=total_votes,
        candidates_count=len(candidates),
        candidates=candidates,
        winners=winners,
        tie_at_cutoff=tie_at_cutoff,
    )


def build_results(election: Election, rows: Sequence[Any], computed_at: datetime) -> ElectionResults:
    """Assemble election results from tally rows (ordered by position)."""
    positions = [
        build_position_result(list(position_rows))
        for _, position_rows in groupby(rows, key=lambda r: r.position_id)
    ]
    return ElectionResults(
        election_id=election.id,
        name=election.name,
        category=election.category,
        department_id=election.department_id,
        status=election.status,
        is_final=election.status == ElectionStatus.CLOSED.value,
        total_votes=sum(p.total_votes for p in positions),
        turnout=int(rows[0].turnout or 0) if rows else 0,
        positions=positions,
        computed_at=computed_at,
    )


def ensure_results_readable(election: Election) -> None:
    """Results exist only while RUNNING (live) or once CLOSED (final)."""
    if election.status not in RESULTS_READABLE_STATUSES:
        raise ResultsUnavailable(
            f"Results are not available while the election is {election.status}",
            reason=f"ELECTION_{election.status}",
        )


class TallyAggregator:
    """Computes election results from the ledger."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def compute_results(self, election_id: int) -> ElectionResults:
        """
        Compute results for an election.

        Raises:
            ElectionNotFound: unknown election
            ResultsUnavailable: election is DRAFT or ARCHIVED
            IntegrityViolation: the ledger does not reconcile
            StoreUnavailable: the ledger could not be read
        """
        async with store_transaction(self.session_factory, "compute_results") as db:
            election = await ElectionRepository(db).get_by_id(election_id)
            if not election:
                raise ElectionNotFound(f"Election {election_id} not found")
            ensure_results_readable(election)
            rows = await VoteRepository(db).get_tally_rows(election_id)

        results = build_results(election, rows, self.clock())
        logger.info(
            "results_computed",
            election_id=election_id,
            status=election.status,
            total_votes=results.total_votes,
            turnout=results.turnout,
        )
        return results
