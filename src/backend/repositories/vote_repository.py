"""
Vote repository for database operations.

The ledger is insert-only: this repository can add votes and invalidation
records but has no way to update or delete a vote.
"""

from typing import Any, Optional

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from models.election import Candidate, Position
from models.vote import BallotAllowance, Vote, VoteInvalidation


def is_valid_vote(vote: Any) -> Any:
    """SQL condition: the vote (or vote alias) has not been invalidated."""
    return ~exists().where(VoteInvalidation.vote_id == vote.id)


class VoteRepository:
    """Repository for vote ledger database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    async def get_by_id(self, vote_id: int) -> Optional[Vote]:
        result = await self.db.execute(select(Vote).where(Vote.id == vote_id))
        return result.scalar_one_or_none()

    async def count_valid_for_voter_position(self, voter_id: int, position_id: int) -> int:
        """Count the voter's valid votes for one position."""
        result = await self.db.execute(
            select(func.count(Vote.id)).where(
                and_(
                    Vote.voter_id == voter_id,
                    Vote.position_id == position_id,
                    is_valid_vote(Vote),
                )
            )
        )
        return result.scalar() or 0

    async def count_valid_by_position_for_voter(self, voter_id: int, election_id: int) -> dict[int, int]:
        """Map position_id -> number of valid votes this voter cast in an election."""
        result = await self.db.execute(
            select(Vote.position_id, func.count(Vote.id))
            .join(Position, Position.id == Vote.position_id)
            .where(
                and_(
                    Vote.voter_id == voter_id,
                    Position.election_id == election_id,
                    is_valid_vote(Vote),
                )
            )
            .group_by(Vote.position_id)
        )
        return {int(position_id): int(count) for position_id, count in result.all()}

    def _insert(self, table: Any) -> Any:
        """Dialect-specific INSERT so ON CONFLICT DO NOTHING is available."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(table)
        if dialect == "sqlite":
            return sqlite_insert(table)
        raise ValueError(f"Unsupported ledger dialect: {dialect}")

    async def ensure_allowance(self, voter_id: int, position_id: int) -> None:
        """Create the voter's allowance row for a position if it is missing."""
        await self.db.execute(
            self._insert(BallotAllowance)
            .values(voter_id=voter_id, position_id=position_id, choices_used=0)
            .on_conflict_do_nothing(index_elements=["voter_id", "position_id"])
        )

    async def claim_allowance(
        self,
        voter_id: int,
        position_id: int,
        choices: int,
        max_choices: int,
    ) -> bool:
        """
        Reserve ``choices`` selections of the voter's allowance for a position.

        Returns False when the allowance cannot cover the request. The row is
        created first if missing, so concurrent first ballots never collide on
        the insert. The conditional UPDATE then waits on the row lock held by
        any concurrent claim and re-checks the limit against the committed
        count.
        """
        if choices > max_choices:
            return False

        await self.ensure_allowance(voter_id, position_id)
        result = await self.db.execute(
            update(BallotAllowance)
            .where(
                and_(
                    BallotAllowance.voter_id == voter_id,
                    BallotAllowance.position_id == position_id,
                    BallotAllowance.choices_used + choices <= max_choices,
                )
            )
            .values(choices_used=BallotAllowance.choices_used + choices)
            .execution_options(synchronize_session=False)
        )
        return self._get_rowcount(result) == 1

    async def release_allowance(self, voter_id: int, position_id: int, choices: int = 1) -> bool:
        """Give back allowance after a vote is invalidated."""
        result = await self.db.execute(
            update(BallotAllowance)
            .where(
                and_(
                    BallotAllowance.voter_id == voter_id,
                    BallotAllowance.position_id == position_id,
                    BallotAllowance.choices_used >= choices,
                )
            )
            .values(choices_used=BallotAllowance.choices_used - choices)
            .execution_options(synchronize_session=False)
        )
        return self._get_rowcount(result) == 1

    async def create_votes(self, voter_id: int, position_id: int, candidate_ids: list[int]) -> list[Vote]:
        """Insert one vote row per candidate. Flushes so constraint violations surface here."""
        votes = [
            Vote(voter_id=voter_id, position_id=position_id, candidate_id=candidate_id)
            for candidate_id in candidate_ids
        ]
        self.db.add_all(votes)
        await self.db.flush()
        return votes

    async def is_invalidated(self, vote_id: int) -> bool:
        result = await self.db.execute(
            select(func.count(VoteInvalidation.id)).where(VoteInvalidation.vote_id == vote_id)
        )
        return (result.scalar() or 0) > 0

    async def create_invalidation(
        self,
        vote_id: int,
        reason: str,
        invalidated_by_id: Optional[int],
    ) -> VoteInvalidation:
        invalidation = VoteInvalidation(
            vote_id=vote_id,
            reason=reason,
            invalidated_by_id=invalidated_by_id,
        )
        self.db.add(invalidation)
        await self.db.flush()
        return invalidation

    async def get_tally_rows(self, election_id: int) -> list[Any]:
        """
        Fetch everything a tally needs in a single statement.

        One row per (position, candidate) with the candidate's valid vote
        count. Each row also carries ``position_rows`` (valid vote rows for
        the whole position, counted independently) and ``turnout`` (distinct
        voters with at least one valid vote in the election). Being one
        statement, the read is a consistent snapshot: a multi-candidate
        ballot committed concurrently is either fully visible or not at all.
        """
        ledger = aliased(Vote)
        row_vote = aliased(Vote)
        turnout_vote = aliased(Vote)
        turnout_position = aliased(Position)

        position_rows = (
            select(func.count(row_vote.id))
            .where(
                and_(
                    row_vote.position_id == Position.id,
                    is_valid_vote(row_vote),
                )
            )
            .correlate(Position)
            .scalar_subquery()
        )

        turnout = (
            select(func.count(turnout_vote.voter_id.distinct()))
            .join(turnout_position, turnout_position.id == turnout_vote.position_id)
            .where(
                and_(
                    turnout_position.election_id == election_id,
                    is_valid_vote(turnout_vote),
                )
            )
            .scalar_subquery()
        )

        query = (
            select(
                Position.id.label("position_id"),
                Position.name.label("position_name"),
                Position.max_choices.label("max_choices"),
                Candidate.id.label("candidate_id"),
                Candidate.display_name.label("display_name"),
                Candidate.photo_url.label("photo_url"),
                Candidate.created_at.label("candidate_created_at"),
                func.count(ledger.id).label("vote_count"),
                position_rows.label("position_rows"),
                turnout.label("turnout"),
            )
            .select_from(Position)
            .join(Candidate, Candidate.position_id == Position.id, isouter=True)
            .join(
                ledger,
                and_(
                    ledger.candidate_id == Candidate.id,
                    ledger.position_id == Position.id,
                    is_valid_vote(ledger),
                ),
                isouter=True,
            )
            .where(Position.election_id == election_id)
            .group_by(
                Position.id,
                Position.name,
                Position.max_choices,
                Candidate.id,
                Candidate.display_name,
                Candidate.photo_url,
                Candidate.created_at,
            )
            .order_by(Position.name, Position.id, Candidate.created_at, Candidate.id)
        )

        result = await self.db.execute(query)
        return list(result.all())
