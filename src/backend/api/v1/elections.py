"""
Election discovery for voters.

Voters see institution-wide elections and those of their own department.
Structure editing lives under the admin router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from api.deps import get_current_voter, get_election_service, get_eligibility_gate
from models.election import ElectionStatus
from schemas.election import ElectionResponse, OpenElection
from schemas.voter import VoterContext
from services.election_service import ElectionService
from services.eligibility import EligibilityGate

router = APIRouter()


@router.get("", response_model=list[OpenElection])
async def list_open_elections(
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    gate: Annotated[EligibilityGate, Depends(get_eligibility_gate)],
) -> list[OpenElection]:
    """
    Running elections the current voter can vote in.

    Each position carries its candidates and how many choices the voter
    has left, so a client can render the ballot without further calls.
    """
    return await gate.open_elections(current_voter.id)


@router.get("/closed", response_model=list[ElectionResponse])
async def list_closed_elections(
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    service: Annotated[ElectionService, Depends(get_election_service)],
) -> list[ElectionResponse]:
    """Closed elections whose final results the current voter may read."""
    if current_voter.is_admin:
        elections = await service.list_elections(status=ElectionStatus.CLOSED)
    else:
        elections = await service.list_closed_for_department(current_voter.department_id)
    return [ElectionResponse.model_validate(e) for e in elections]
