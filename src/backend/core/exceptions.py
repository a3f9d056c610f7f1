"""
Election engine error taxonomy.

Every error carries a machine-readable ``reason`` so callers can show an
accurate message instead of a generic denial, an HTTP-equivalent
``status_code`` and whether retrying the same request can ever succeed.
"""

from enum import Enum


class IneligibilityReason(str, Enum):
    """Why a voter may not vote for a position right now."""

    NOT_A_VOTER = "NOT_A_VOTER"
    UNVERIFIED = "UNVERIFIED"
    ELECTION_NOT_RUNNING = "ELECTION_NOT_RUNNING"
    OUTSIDE_VOTING_WINDOW = "OUTSIDE_VOTING_WINDOW"
    DEPARTMENT_MISMATCH = "DEPARTMENT_MISMATCH"
    CHOICE_LIMIT_REACHED = "CHOICE_LIMIT_REACHED"


class BallotRejectionReason(str, Enum):
    """Why a proposed ballot was rejected."""

    EMPTY_SELECTION = "EMPTY_SELECTION"
    DUPLICATE_CANDIDATE = "DUPLICATE_CANDIDATE"
    CHOICE_LIMIT_EXCEEDED = "CHOICE_LIMIT_EXCEEDED"
    CANDIDATE_NOT_IN_POSITION = "CANDIDATE_NOT_IN_POSITION"


class ElectionError(Exception):
    """Base class for all engine errors."""

    status_code = 400
    retryable = False
    default_reason: str | None = None

    def __init__(self, message: str, reason: str | Enum | None = None):
        super().__init__(message)
        self.message = message
        if isinstance(reason, Enum):
            reason = reason.value
        self.reason = reason or self.default_reason

    @property
    def error(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "error": self.error,
            "reason": self.reason,
            "retryable": self.retryable,
        }


class NotEligible(ElectionError):
    """The voter may not vote for this position (user-correctable)."""

    status_code = 403


class AlreadyVoted(NotEligible):
    """The voter already used their allowance for this position.

    Decisive: retrying with the same input can never succeed.
    """

    status_code = 409
    default_reason = IneligibilityReason.CHOICE_LIMIT_REACHED.value


class RejectedBallot(ElectionError):
    """The proposed selections are malformed for this position."""

    status_code = 422


class InvalidLifecycleTransition(ElectionError):
    """The operation is not permitted in the election's current state."""

    status_code = 409


class ElectionNotRunning(NotEligible, InvalidLifecycleTransition):
    """A vote was attempted while the election is not RUNNING."""

    status_code = 409
    default_reason = IneligibilityReason.ELECTION_NOT_RUNNING.value


class ResultsUnavailable(InvalidLifecycleTransition):
    """Results were requested outside RUNNING/CLOSED."""


class StoreUnavailable(ElectionError):
    """The ledger store could not be reached in time. Retry with backoff."""

    status_code = 503
    retryable = True
    default_reason = "STORE_UNAVAILABLE"


class IntegrityViolation(ElectionError):
    """Ledger counts do not reconcile. Results must not be published."""

    status_code = 500
    default_reason = "COUNT_MISMATCH"


class ValidationFailed(ElectionError):
    """Administrative input is invalid."""

    status_code = 422


class DuplicatePosition(ElectionError):
    status_code = 409
    default_reason = "DUPLICATE_POSITION"


class VoteAlreadyInvalidated(ElectionError):
    status_code = 409
    default_reason = "ALREADY_INVALIDATED"


class NotFound(ElectionError):
    status_code = 404
    default_reason = "NOT_FOUND"


class ElectionNotFound(NotFound):
    pass


class PositionNotFound(NotFound):
    pass


class CandidateNotFound(NotFound):
    pass


class VoterNotFound(NotFound):
    pass


class VoteNotFound(NotFound):
    pass


class DepartmentNotFound(NotFound):
    pass
