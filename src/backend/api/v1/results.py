"""
Public results endpoint.

Voters only see final results: live tallies of a RUNNING election are
reserved for administrators.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from api.deps import get_current_voter, get_tally_aggregator
from core.exceptions import IneligibilityReason, NotEligible, ResultsUnavailable
from models.election import ElectionCategory
from schemas.results import ElectionResults
from schemas.voter import VoterContext
from services.tally_service import TallyAggregator

router = APIRouter()


@router.get("/{election_id}", response_model=ElectionResults)
async def get_results(
    election_id: int,
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
    tally: Annotated[TallyAggregator, Depends(get_tally_aggregator)],
) -> ElectionResults:
    """Final results of a CLOSED election."""
    results = await tally.compute_results(election_id)

    if not results.is_final:
        raise ResultsUnavailable(
            "Results are published once the election closes",
            reason=f"ELECTION_{results.status}",
        )

    if (
        results.category == ElectionCategory.DEPARTMENT.value
        and not current_voter.is_admin
        and current_voter.department_id != results.department_id
    ):
        raise NotEligible(
            "These results belong to another department",
            reason=IneligibilityReason.DEPARTMENT_MISMATCH,
        )

    return results
