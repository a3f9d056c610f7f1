"""
Admin Election Management Endpoints.

Election setup, lifecycle transitions, live results and vote
invalidation. Every endpoint requires a valid JWT for a voter with
is_admin=True; destructive operations are audit-logged by the services.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from api.deps import (
    get_current_admin,
    get_election_service,
    get_lifecycle_controller,
    get_tally_aggregator,
    get_vote_recorder,
)
from models.election import ElectionStatus
from schemas.election import (
    CandidateCreate,
    CandidateResponse,
    CandidateUpdate,
    DepartmentCreate,
    DepartmentResponse,
    ElectionCreate,
    ElectionDetail,
    ElectionResponse,
    ElectionUpdate,
    PositionCreate,
    PositionResponse,
    PositionUpdate,
    TransitionRequest,
)
from schemas.results import ElectionResults
from schemas.vote import InvalidationRequest, InvalidationResponse
from schemas.voter import VoterContext, VoterCreate, VoterResponse
from services.election_lifecycle import ElectionLifecycleController
from services.election_service import ElectionService
from services.tally_service import TallyAggregator
from services.vote_recorder import VoteRecorder

router = APIRouter()

Admin = Annotated[VoterContext, Depends(get_current_admin)]
Elections = Annotated[ElectionService, Depends(get_election_service)]


# ============================================================================
# Departments and voters
# ============================================================================


@router.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(data: DepartmentCreate, admin: Admin, service: Elections) -> DepartmentResponse:
    department = await service.create_department(data.name)
    return DepartmentResponse.model_validate(department)


@router.post("/voters", response_model=VoterResponse, status_code=status.HTTP_201_CREATED)
async def register_voter(data: VoterCreate, admin: Admin, service: Elections) -> VoterResponse:
    voter = await service.register_voter(**data.model_dump())
    return VoterResponse.model_validate(voter)


# ============================================================================
# Elections
# ============================================================================


@router.get("/elections", response_model=list[ElectionResponse])
async def list_elections(
    admin: Admin,
    service: Elections,
    election_status: Optional[ElectionStatus] = Query(None, alias="status"),
    department_id: Optional[int] = Query(None),
) -> list[ElectionResponse]:
    elections = await service.list_elections(status=election_status, department_id=department_id)
    return [ElectionResponse.model_validate(e) for e in elections]


@router.post("/elections", response_model=ElectionResponse, status_code=status.HTTP_201_CREATED)
async def create_election(data: ElectionCreate, admin: Admin, service: Elections) -> ElectionResponse:
    """Create an election in DRAFT."""
    election = await service.create_election(**data.model_dump(), created_by_id=admin.id)
    return ElectionResponse.model_validate(election)


@router.get("/elections/{election_id}", response_model=ElectionDetail)
async def get_election(election_id: int, admin: Admin, service: Elections) -> ElectionDetail:
    election = await service.get_election(election_id)
    return ElectionDetail.model_validate(election)


@router.patch("/elections/{election_id}", response_model=ElectionResponse)
async def update_election(
    election_id: int,
    data: ElectionUpdate,
    admin: Admin,
    service: Elections,
) -> ElectionResponse:
    """Update a DRAFT election. Only fields present in the body change."""
    election = await service.update_election(election_id, **data.model_dump(exclude_unset=True))
    return ElectionResponse.model_validate(election)


@router.post("/elections/{election_id}/transition", response_model=ElectionResponse)
async def transition_election(
    election_id: int,
    data: TransitionRequest,
    admin: Admin,
    controller: Annotated[ElectionLifecycleController, Depends(get_lifecycle_controller)],
) -> ElectionResponse:
    """
    Move an election to its next state.

    DRAFT -> RUNNING -> CLOSED -> ARCHIVED; closing publishes final results.
    """
    election = await controller.transition_election(election_id, data.target, actor_id=admin.id)
    return ElectionResponse.model_validate(election)


@router.get("/elections/{election_id}/results", response_model=ElectionResults)
async def get_election_results(
    election_id: int,
    admin: Admin,
    tally: Annotated[TallyAggregator, Depends(get_tally_aggregator)],
) -> ElectionResults:
    """Live (RUNNING) or final (CLOSED) results."""
    return await tally.compute_results(election_id)


# ============================================================================
# Positions and candidates
# ============================================================================


@router.post(
    "/elections/{election_id}/positions",
    response_model=PositionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_position(
    election_id: int,
    data: PositionCreate,
    admin: Admin,
    service: Elections,
) -> PositionResponse:
    position = await service.add_position(election_id, data.name, data.max_choices)
    return PositionResponse.model_validate(position)


@router.patch("/positions/{position_id}", response_model=PositionResponse)
async def update_position(
    position_id: int,
    data: PositionUpdate,
    admin: Admin,
    service: Elections,
) -> PositionResponse:
    position = await service.update_position(position_id, **data.model_dump(exclude_unset=True))
    return PositionResponse.model_validate(position)


@router.delete("/positions/{position_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_position(position_id: int, admin: Admin, service: Elections) -> None:
    await service.remove_position(position_id)


@router.post(
    "/positions/{position_id}/candidates",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_candidate(
    position_id: int,
    data: CandidateCreate,
    admin: Admin,
    service: Elections,
) -> CandidateResponse:
    candidate = await service.add_candidate(position_id, **data.model_dump())
    return CandidateResponse.model_validate(candidate)


@router.patch("/candidates/{candidate_id}", response_model=CandidateResponse)
async def update_candidate(
    candidate_id: int,
    data: CandidateUpdate,
    admin: Admin,
    service: Elections,
) -> CandidateResponse:
    candidate = await service.update_candidate(candidate_id, **data.model_dump(exclude_unset=True))
    return CandidateResponse.model_validate(candidate)


@router.delete("/candidates/{candidate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_candidate(candidate_id: int, admin: Admin, service: Elections) -> None:
    await service.remove_candidate(candidate_id)


# ============================================================================
# Votes
# ============================================================================


@router.post(
    "/votes/{vote_id}/invalidate",
    response_model=InvalidationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invalidate_vote(
    vote_id: int,
    data: InvalidationRequest,
    admin: Admin,
    recorder: Annotated[VoteRecorder, Depends(get_vote_recorder)],
) -> InvalidationResponse:
    """Exclude a vote from tallies. The vote stays in the ledger."""
    invalidation = await recorder.invalidate_vote(vote_id, data.reason, invalidated_by_id=admin.id)
    return InvalidationResponse.model_validate(invalidation)
