"""
Voter-related Pydantic schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class VoterCreate(BaseModel):
    """Schema for registering a voter (admin only)."""

    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    student_id: Optional[str] = Field(None, max_length=50)
    department_id: Optional[int] = None
    email_verified: bool = False
    is_admin: bool = False


class VoterResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    student_id: Optional[str] = None
    department_id: Optional[int] = None
    email_verified: bool = False
    is_admin: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VoterContext(BaseModel):
    """
    The authenticated caller, resolved once per request.

    Passed explicitly into engine operations; nothing reads identity from
    ambient request state.
    """

    id: int
    email: str
    department_id: Optional[int] = None
    email_verified: bool = False
    is_admin: bool = False


class VerificationCodeRequest(BaseModel):
    email: EmailStr


class VerificationConfirm(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=12)


class VerificationResponse(BaseModel):
    success: bool
    message: str
