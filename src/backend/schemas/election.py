"""
Election structure schemas (admin input and public output).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from models.election import ElectionCategory, ElectionStatus


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class DepartmentResponse(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ElectionCreate(BaseModel):
    """Schema for creating an election. New elections start in DRAFT."""

    name: str = Field(..., min_length=1, max_length=200)
    category: ElectionCategory = ElectionCategory.INSTITUTION
    department_id: Optional[int] = Field(
        None, description="Required for DEPARTMENT elections, forbidden otherwise"
    )
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class ElectionUpdate(BaseModel):
    """Partial update of a DRAFT election."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[ElectionCategory] = None
    department_id: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class TransitionRequest(BaseModel):
    """Move an election to its next lifecycle state."""

    target: ElectionStatus


class CandidateCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=200)
    voter_id: Optional[int] = None
    manifesto: Optional[str] = Field(None, max_length=10000)
    photo_url: Optional[str] = Field(None, max_length=500)


class CandidateUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=200)
    position_id: Optional[int] = None
    voter_id: Optional[int] = None
    manifesto: Optional[str] = Field(None, max_length=10000)
    photo_url: Optional[str] = Field(None, max_length=500)


class CandidateResponse(BaseModel):
    id: int
    position_id: int
    display_name: str
    voter_id: Optional[int] = None
    manifesto: Optional[str] = None
    photo_url: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PositionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    max_choices: int = Field(1, ge=1, description="How many candidates a voter may select")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Position name must not be blank")
        return v


class PositionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    max_choices: Optional[int] = Field(None, ge=1)


class PositionResponse(BaseModel):
    id: int
    election_id: int
    name: str
    max_choices: int
    candidates: List[CandidateResponse] = []

    model_config = {"from_attributes": True}


class ElectionResponse(BaseModel):
    id: int
    name: str
    category: ElectionCategory
    department_id: Optional[int] = None
    status: ElectionStatus
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ElectionDetail(ElectionResponse):
    """Election with its positions and candidates."""

    positions: List[PositionResponse] = []


class OpenPosition(PositionResponse):
    """A position on a voter's ballot, with how many choices they have left."""

    votes_cast: int = 0
    remaining: int = 0


class OpenElection(ElectionResponse):
    """A running election the current voter can see, with their progress."""

    positions: List[OpenPosition] = []
    completed: bool = False
