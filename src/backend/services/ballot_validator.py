"""
Ballot validation.

Pure checks on a proposed set of selections for one position. Nothing here
touches the store; the caller passes the position (with its candidates
loaded) and how many choices the voter has left.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

from core.exceptions import BallotRejectionReason, RejectedBallot
from models.election import Position


@dataclass(frozen=True)
class ValidBallot:
    """A ballot that passed validation. Selections keep submission order."""

    position_id: int
    candidate_ids: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.candidate_ids)


def validate_ballot(
    position_id: int,
    position_candidate_ids: Iterable[int],
    candidate_ids: Sequence[int],
    remaining: int,
) -> ValidBallot:
    """
    Validate selections against a position.

    Checks, first failure wins:
    - at least one candidate is selected
    - no candidate is selected twice
    - the number of selections fits the voter's remaining choices
    - every candidate stands for this position

    Raises:
        RejectedBallot: with the failing reason
    """
    if not candidate_ids:
        raise RejectedBallot(
            "Select at least one candidate",
            reason=BallotRejectionReason.EMPTY_SELECTION,
        )

    if len(set(candidate_ids)) != len(candidate_ids):
        raise RejectedBallot(
            "A candidate was selected more than once",
            reason=BallotRejectionReason.DUPLICATE_CANDIDATE,
        )

    if len(candidate_ids) > remaining:
        raise RejectedBallot(
            f"Too many selections: {remaining} choice(s) left for this position",
            reason=BallotRejectionReason.CHOICE_LIMIT_EXCEEDED,
        )

    allowed = set(position_candidate_ids)
    unknown = [cid for cid in candidate_ids if cid not in allowed]
    if unknown:
        raise RejectedBallot(
            f"Candidate(s) {unknown} do not stand for this position",
            reason=BallotRejectionReason.CANDIDATE_NOT_IN_POSITION,
        )

    return ValidBallot(position_id=position_id, candidate_ids=tuple(candidate_ids))


class BallotValidator:
    """Validates ballots against a loaded position."""

    def validate(self, position: Position, candidate_ids: Sequence[int], remaining: int) -> ValidBallot:
        return validate_ballot(
            position.id,
            (candidate.id for candidate in position.candidates),
            list(candidate_ids),
            remaining,
        )
