"""Repository modules for database access."""

from repositories.election_repository import ElectionRepository
from repositories.one_time_code_repository import OneTimeCodeRepository
from repositories.vote_repository import VoteRepository
from repositories.voter_repository import VoterRepository

__all__ = [
    "ElectionRepository",
    "OneTimeCodeRepository",
    "VoteRepository",
    "VoterRepository",
]
