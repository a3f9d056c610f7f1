"""Database models module."""

from models.election import Candidate, Department, Election, ElectionCategory, ElectionStatus, Position
from models.one_time_code import CodePurpose, OneTimeCode
from models.vote import BallotAllowance, Vote, VoteInvalidation
from models.voter import Voter

__all__ = [
    "Department",
    "Election",
    "ElectionCategory",
    "ElectionStatus",
    "Position",
    "Candidate",
    "Voter",
    "Vote",
    "VoteInvalidation",
    "BallotAllowance",
    "OneTimeCode",
    "CodePurpose",
]
