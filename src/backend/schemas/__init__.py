"""Schemas module initialization."""

from schemas.election import ElectionCreate, ElectionDetail, ElectionResponse, PositionCreate
from schemas.results import CandidateResult, ElectionResults, PositionResult
from schemas.vote import BallotCreate, BallotReceipt, BallotStatus, EligibilityResponse
from schemas.voter import VoterContext, VoterCreate, VoterResponse

__all__ = [
    "ElectionCreate",
    "ElectionDetail",
    "ElectionResponse",
    "PositionCreate",
    "CandidateResult",
    "ElectionResults",
    "PositionResult",
    "BallotCreate",
    "BallotReceipt",
    "BallotStatus",
    "EligibilityResponse",
    "VoterContext",
    "VoterCreate",
    "VoterResponse",
]
