"""
Eligibility gate.

Decides whether a voter may vote for a position right now and, if not,
why. Checks run in a fixed order and the first failing check wins, so the
same state always yields the same reason:

1. NOT_A_VOTER           - administrators run elections, they do not vote
2. UNVERIFIED            - the voter's email is not verified
3. ELECTION_NOT_RUNNING  - the position's election is not RUNNING
4. OUTSIDE_VOTING_WINDOW - RUNNING, but outside starts_at/ends_at
                           (both ends inclusive)
5. DEPARTMENT_MISMATCH   - department election, voter from elsewhere
6. CHOICE_LIMIT_REACHED  - the voter already used every choice

The gate only reads. The choice limit it reports is advisory; the
authoritative limit is enforced by the vote recorder's allowance claim.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import (
    AlreadyVoted,
    ElectionNotRunning,
    IneligibilityReason,
    NotEligible,
    PositionNotFound,
    VoterNotFound,
)
from db.session import store_transaction
from models.election import Election, ElectionCategory, ElectionStatus, Position, as_utc, utcnow
from models.voter import Voter
from repositories.election_repository import ElectionRepository
from repositories.vote_repository import VoteRepository
from repositories.voter_repository import VoterRepository
from schemas.election import ElectionResponse, OpenElection, OpenPosition, PositionResponse

logger = structlog.get_logger(__name__)

_MESSAGES = {
    IneligibilityReason.NOT_A_VOTER: "Administrators cannot vote",
    IneligibilityReason.UNVERIFIED: "Verify your email address before voting",
    IneligibilityReason.ELECTION_NOT_RUNNING: "This election is not accepting votes",
    IneligibilityReason.OUTSIDE_VOTING_WINDOW: "Voting is not open at this time",
    IneligibilityReason.DEPARTMENT_MISMATCH: "This election is restricted to another department",
    IneligibilityReason.CHOICE_LIMIT_REACHED: "You have already used all your choices for this position",
}


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of an eligibility check."""

    eligible: bool
    reason: Optional[IneligibilityReason]
    votes_cast: int
    remaining: int

    @property
    def message(self) -> str:
        if self.reason is None:
            return "Eligible to vote"
        return _MESSAGES[self.reason]

    def raise_if_ineligible(self) -> None:
        """Raise the error matching the reason, if there is one."""
        if self.reason is None:
            return
        if self.reason == IneligibilityReason.ELECTION_NOT_RUNNING:
            raise ElectionNotRunning(self.message)
        if self.reason == IneligibilityReason.CHOICE_LIMIT_REACHED:
            raise AlreadyVoted(self.message)
        raise NotEligible(self.message, reason=self.reason)


def within_voting_window(election: Election, now: datetime) -> bool:
    """True when ``now`` falls inside the election's window. Both ends are inclusive."""
    starts_at = as_utc(election.starts_at)
    ends_at = as_utc(election.ends_at)
    if starts_at is not None and now < starts_at:
        return False
    if ends_at is not None and now > ends_at:
        return False
    return True


def ineligibility_reason(
    voter: Voter,
    election: Election,
    remaining: int,
    now: datetime,
    email_verified: Optional[bool] = None,
    enforce_voting_window: bool = True,
) -> Optional[IneligibilityReason]:
    """Return the first failing check, or None when the voter may vote."""
    if voter.is_admin:
        return IneligibilityReason.NOT_A_VOTER

    verified = voter.email_verified if email_verified is None else email_verified
    if not verified:
        return IneligibilityReason.UNVERIFIED

    if election.status != ElectionStatus.RUNNING.value:
        return IneligibilityReason.ELECTION_NOT_RUNNING

    if enforce_voting_window and not within_voting_window(election, now):
        return IneligibilityReason.OUTSIDE_VOTING_WINDOW

    if (
        election.category == ElectionCategory.DEPARTMENT.value
        and voter.department_id != election.department_id
    ):
        return IneligibilityReason.DEPARTMENT_MISMATCH

    if remaining <= 0:
        return IneligibilityReason.CHOICE_LIMIT_REACHED

    return None


class EligibilityGate:
    """Read-only eligibility checks against the ledger."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Callable[[], datetime] = utcnow,
        enforce_voting_window: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        if enforce_voting_window is None:
            enforce_voting_window = settings.ENFORCE_VOTING_WINDOW
        self.enforce_voting_window = enforce_voting_window

    async def check_eligible(
        self,
        voter_id: int,
        position_id: int,
        email_verified: Optional[bool] = None,
    ) -> EligibilityResult:
        """
        Check whether a voter may vote for a position.

        Args:
            voter_id: The voter
            position_id: The position
            email_verified: Verification state supplied by the identity
                layer; falls back to the voter record when omitted

        Raises:
            VoterNotFound, PositionNotFound: unknown IDs
            StoreUnavailable: the ledger could not be read
        """
        async with store_transaction(self.session_factory, "check_eligible") as db:
            voter = await VoterRepository(db).get_by_id(voter_id)
            if not voter:
                raise VoterNotFound(f"Voter {voter_id} not found")
            position = await ElectionRepository(db).get_position(position_id)
            if not position:
                raise PositionNotFound(f"Position {position_id} not found")
            return await self.evaluate(db, voter, position, position.election, email_verified)

    async def evaluate(
        self,
        db: AsyncSession,
        voter: Voter,
        position: Position,
        election: Election,
        email_verified: Optional[bool] = None,
    ) -> EligibilityResult:
        """Evaluate eligibility inside an already-open transaction."""
        votes_cast = await VoteRepository(db).count_valid_for_voter_position(voter.id, position.id)
        remaining = max(position.max_choices - votes_cast, 0)
        reason = ineligibility_reason(
            voter,
            election,
            remaining,
            now=self.clock(),
            email_verified=email_verified,
            enforce_voting_window=self.enforce_voting_window,
        )
        if reason is not None:
            logger.debug(
                "voter_not_eligible",
                voter_id=voter.id,
                position_id=position.id,
                reason=reason.value,
            )
        return EligibilityResult(
            eligible=reason is None,
            reason=reason,
            votes_cast=votes_cast,
            remaining=remaining,
        )

    async def open_elections(self, voter_id: int) -> list[OpenElection]:
        """
        Running elections the voter can vote in right now, with their progress.

        Lists institution-wide elections plus those of the voter's own
        department. Elections outside their voting window are left out when
        the window is enforced. Administrators see nothing.

        Raises:
            VoterNotFound: unknown voter
        """
        async with store_transaction(self.session_factory, "open_elections") as db:
            voter = await VoterRepository(db).get_by_id(voter_id)
            if not voter:
                raise VoterNotFound(f"Voter {voter_id} not found")
            if voter.is_admin:
                return []

            now = self.clock()
            elections = await ElectionRepository(db).list_visible_to_department(
                voter.department_id,
                ElectionStatus.RUNNING,
                with_structure=True,
            )
            if self.enforce_voting_window:
                elections = [e for e in elections if within_voting_window(e, now)]

            votes = VoteRepository(db)
            listing = []
            for election in elections:
                cast = await votes.count_valid_by_position_for_voter(voter.id, election.id)
                positions = [
                    OpenPosition(
                        **PositionResponse.model_validate(position).model_dump(),
                        votes_cast=cast.get(position.id, 0),
                        remaining=max(position.max_choices - cast.get(position.id, 0), 0),
                    )
                    for position in election.positions
                ]
                listing.append(
                    OpenElection(
                        **ElectionResponse.model_validate(election).model_dump(),
                        positions=positions,
                        completed=bool(positions) and all(p.remaining == 0 for p in positions),
                    )
                )

        logger.debug("open_elections_listed", voter_id=voter_id, count=len(listing))
        return listing
