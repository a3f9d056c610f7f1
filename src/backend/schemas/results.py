"""
Election results schemas.

Results are always derived from the votes ledger at read time; nothing here
is ever stored.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CandidateResult(BaseModel):
    """Tally for one candidate."""

    candidate_id: int
    display_name: str
    photo_url: Optional[str] = None
    vote_count: int = 0
    vote_percentage: float = Field(0.0, description="Share of the position's valid votes")
    rank: int = Field(..., description="Competition rank: equal counts share a rank")
    is_winner: bool = False


class PositionResult(BaseModel):
    """
    Tally for one position.

    ``candidates`` is ordered by vote count descending, ties broken by
    candidate creation order, so the same ledger always yields the same
    ordering.
    """

    position_id: int
    name: str
    max_choices: int
    total_votes: int = 0
    candidates_count: int = 0
    candidates: List[CandidateResult] = []
    winners: List[int] = Field(
        default_factory=list,
        description="Candidate IDs filling the position's seats, best first",
    )
    tie_at_cutoff: bool = Field(
        False,
        description="True when the last seat is tied with the first runner-up",
    )


class ElectionResults(BaseModel):
    """Full results for an election."""

    election_id: int
    name: str
    category: str
    department_id: Optional[int] = None
    status: str
    is_final: bool = Field(False, description="True once the election is CLOSED")
    total_votes: int = 0
    turnout: int = Field(0, description="Distinct voters with at least one valid vote")
    positions: List[PositionResult] = []
    computed_at: datetime
