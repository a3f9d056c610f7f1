"""
Vote-related Pydantic schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class BallotCreate(BaseModel):
    """
    Schema for casting a ballot for one position.

    One ballot may select several candidates when the position allows it;
    either every selection is recorded or none is.
    """

    position_id: int
    candidate_ids: List[int] = Field(default_factory=list)


class VoteRecord(BaseModel):
    """A single recorded selection."""

    id: int
    position_id: int
    candidate_id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BallotReceipt(BaseModel):
    """Response after a ballot was recorded."""

    success: bool
    message: str
    votes: List[VoteRecord] = []


class EligibilityResponse(BaseModel):
    """Whether the caller may vote for a position right now."""

    position_id: int
    eligible: bool
    reason: Optional[str] = None
    votes_cast: int = 0
    remaining: int = 0


class PositionBallotStatus(BaseModel):
    position_id: int
    name: str
    max_choices: int
    votes_cast: int = 0
    remaining: int = 0


class BallotStatus(BaseModel):
    """The caller's progress through an election's ballot."""

    election_id: int
    positions: List[PositionBallotStatus] = []
    completed: bool = Field(False, description="True when no position has choices left")


class InvalidationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class InvalidationResponse(BaseModel):
    vote_id: int
    reason: str
    invalidated_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
