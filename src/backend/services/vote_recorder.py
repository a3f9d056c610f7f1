"""
Vote recorder.

Turns a validated ballot into ledger rows. One ballot is one store
transaction: the eligibility check, the allowance claim and every vote row
either commit together or not at all.

The per-position choice limit is held by the store, not by the check in
Python: each ballot claims its selections from the voter's BallotAllowance
row with a conditional UPDATE, so two concurrent ballots from the same voter
can never together exceed ``max_choices``.
"""

from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import (
    AlreadyVoted,
    ElectionNotFound,
    InvalidLifecycleTransition,
    PositionNotFound,
    VoteAlreadyInvalidated,
    VoteNotFound,
    VoterNotFound,
)
from db.session import store_transaction
from models.election import ElectionStatus
from models.vote import Vote, VoteInvalidation
from repositories.election_repository import ElectionRepository
from repositories.vote_repository import VoteRepository
from repositories.voter_repository import VoterRepository
from schemas.vote import BallotStatus, PositionBallotStatus
from services.ballot_validator import BallotValidator
from services.eligibility import EligibilityGate

logger = structlog.get_logger(__name__)


class VoteRecorder:
    """Records ballots and invalidations in the votes ledger."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gate: Optional[EligibilityGate] = None,
        validator: Optional[BallotValidator] = None,
    ):
        self.session_factory = session_factory
        self.gate = gate or EligibilityGate(session_factory)
        self.validator = validator or BallotValidator()

    async def cast_ballot(
        self,
        voter_id: int,
        position_id: int,
        candidate_ids: Sequence[int],
        email_verified: Optional[bool] = None,
    ) -> list[Vote]:
        """
        Record one ballot for one position.

        Returns the vote rows, one per selected candidate.

        Raises:
            NotEligible: the voter may not vote for this position
                (ElectionNotRunning and AlreadyVoted are subclasses)
            RejectedBallot: the selections are malformed
            AlreadyVoted: a concurrent or repeated ballot already used the
                allowance; never retry this one
            StoreUnavailable: nothing was recorded, safe to retry
        """
        try:
            async with store_transaction(self.session_factory, "cast_ballot") as db:
                voter = await VoterRepository(db).get_by_id(voter_id)
                if not voter:
                    raise VoterNotFound(f"Voter {voter_id} not found")

                election_repo = ElectionRepository(db)
                position = await election_repo.get_position(position_id)
                if not position:
                    raise PositionNotFound(f"Position {position_id} not found")
                election = await election_repo.get_for_share(position.election_id)

                eligibility = await self.gate.evaluate(db, voter, position, election, email_verified)
                eligibility.raise_if_ineligible()

                ballot = self.validator.validate(position, candidate_ids, eligibility.remaining)

                vote_repo = VoteRepository(db)
                claimed = await vote_repo.claim_allowance(
                    voter.id,
                    position.id,
                    len(ballot),
                    position.max_choices,
                )
                if not claimed:
                    raise AlreadyVoted("Your choices for this position were already used")

                votes = await vote_repo.create_votes(voter.id, position.id, list(ballot.candidate_ids))
        except IntegrityError as e:
            # A uniqueness constraint caught a concurrent or repeated ballot
            logger.info(
                "ballot_conflict",
                voter_id=voter_id,
                position_id=position_id,
                constraint_error=type(e.orig).__name__ if e.orig is not None else None,
            )
            raise AlreadyVoted(
                "This ballot conflicts with a vote already recorded",
                reason="DUPLICATE_VOTE",
            ) from e

        logger.info(
            "ballot_cast",
            voter_id=voter_id,
            position_id=position_id,
            selections=len(votes),
        )
        return votes

    async def invalidate_vote(
        self,
        vote_id: int,
        reason: str,
        invalidated_by_id: Optional[int] = None,
    ) -> VoteInvalidation:
        """
        Exclude a vote from tallies without deleting it.

        Only while the election is RUNNING: once CLOSED the results are
        final. The voter gets the invalidated choice back.
        """
        try:
            async with store_transaction(self.session_factory, "invalidate_vote") as db:
                vote_repo = VoteRepository(db)
                vote = await vote_repo.get_by_id(vote_id)
                if not vote:
                    raise VoteNotFound(f"Vote {vote_id} not found")

                election_repo = ElectionRepository(db)
                position = await election_repo.get_position(vote.position_id)
                election = await election_repo.get_for_share(position.election_id)
                if election.status != ElectionStatus.RUNNING.value:
                    raise InvalidLifecycleTransition(
                        "Votes can only be invalidated while the election is running",
                        reason=f"{election.status}_IS_FINAL",
                    )

                if await vote_repo.is_invalidated(vote.id):
                    raise VoteAlreadyInvalidated(f"Vote {vote_id} is already invalidated")

                invalidation = await vote_repo.create_invalidation(vote.id, reason, invalidated_by_id)
                await vote_repo.release_allowance(vote.voter_id, vote.position_id)
        except IntegrityError as e:
            raise VoteAlreadyInvalidated(f"Vote {vote_id} is already invalidated") from e

        logger.warning(
            "vote_invalidated",
            vote_id=vote_id,
            position_id=vote.position_id,
            invalidated_by=invalidated_by_id,
            reason=reason,
        )
        return invalidation

    async def ballot_status(self, voter_id: int, election_id: int) -> BallotStatus:
        """Per-position progress of one voter through an election."""
        async with store_transaction(self.session_factory, "ballot_status") as db:
            election = await ElectionRepository(db).get_by_id(election_id, with_structure=True)
            if not election:
                raise ElectionNotFound(f"Election {election_id} not found")
            cast = await VoteRepository(db).count_valid_by_position_for_voter(voter_id, election_id)

        positions = [
            PositionBallotStatus(
                position_id=position.id,
                name=position.name,
                max_choices=position.max_choices,
                votes_cast=cast.get(position.id, 0),
                remaining=max(position.max_choices - cast.get(position.id, 0), 0),
            )
            for position in election.positions
        ]
        return BallotStatus(
            election_id=election_id,
            positions=positions,
            completed=bool(positions) and all(p.remaining == 0 for p in positions),
        )
