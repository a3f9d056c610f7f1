"""
Vote endpoints.

Every ballot goes through the vote recorder, which checks eligibility,
validates the selections and records them in one store transaction.
Engine errors (NotEligible, RejectedBallot, AlreadyVoted, ...) are rendered
by the application's exception handler.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from api.deps import get_current_voter, get_eligibility_gate, get_vote_recorder
from schemas.vote import BallotCreate, BallotReceipt, BallotStatus, EligibilityResponse, VoteRecord
from schemas.voter import VoterContext
from services.eligibility import EligibilityGate
from services.vote_recorder import VoteRecorder

router = APIRouter()


@router.post("", response_model=BallotReceipt, status_code=status.HTTP_201_CREATED)
async def cast_ballot(
    ballot: BallotCreate,
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    recorder: Annotated[VoteRecorder, Depends(get_vote_recorder)],
) -> BallotReceipt:
    """
    Cast a ballot for one position.

    Requirements:
    - Voter must be authenticated with a verified email
    - The position's election must be RUNNING (and inside its voting window)
    - Selections must be distinct candidates of the position and fit the
      voter's remaining choices
    """
    votes = await recorder.cast_ballot(
        current_voter.id,
        ballot.position_id,
        ballot.candidate_ids,
        email_verified=current_voter.email_verified,
    )
    return BallotReceipt(
        success=True,
        message=f"Recorded {len(votes)} selection(s)",
        votes=[VoteRecord.model_validate(v) for v in votes],
    )


@router.get("/status/{election_id}", response_model=BallotStatus)
async def get_ballot_status(
    election_id: int,
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    recorder: Annotated[VoteRecorder, Depends(get_vote_recorder)],
) -> BallotStatus:
    """How many choices the current voter has used per position."""
    return await recorder.ballot_status(current_voter.id, election_id)


@router.get("/eligibility/{position_id}", response_model=EligibilityResponse)
async def get_eligibility(
    position_id: int,
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    gate: Annotated[EligibilityGate, Depends(get_eligibility_gate)],
) -> EligibilityResponse:
    """Whether the current voter may vote for a position, and if not why."""
    result = await gate.check_eligible(
        current_voter.id,
        position_id,
        email_verified=current_voter.email_verified,
    )
    return EligibilityResponse(
        position_id=position_id,
        eligible=result.eligible,
        reason=result.reason.value if result.reason else None,
        votes_cast=result.votes_cast,
        remaining=result.remaining,
    )
