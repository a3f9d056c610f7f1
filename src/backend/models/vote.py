"""
Vote ledger models.

The votes table is insert-only: a vote is never updated or deleted.
Corrections are recorded as VoteInvalidation rows, which exclude a vote
from tallies while keeping it in the ledger for audit.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from models.election import utcnow


class Vote(Base):
    """
    One selection of one candidate for one position by one voter.

    INTEGRITY:
    - (voter_id, position_id, candidate_id) is unique: no double vote for
      the same candidate
    - (candidate_id, position_id) must name a candidate of that position
      (composite foreign key)
    - the per-position choice limit is held by BallotAllowance
    """

    __tablename__ = "votes"

    __table_args__ = (
        UniqueConstraint(
            "voter_id",
            "position_id",
            "candidate_id",
            name="uq_votes_voter_position_candidate",
        ),
        ForeignKeyConstraint(
            ["candidate_id", "position_id"],
            ["candidates.id", "candidates.position_id"],
            name="fk_votes_candidate_position",
            ondelete="RESTRICT",
        ),
        Index("ix_votes_position_candidate", "position_id", "candidate_id"),
        Index("ix_votes_voter_position", "voter_id", "position_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    voter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("voters.id", ondelete="RESTRICT"),
        nullable=False,
    )
    position_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("positions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    candidate_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        index=True,
    )


class BallotAllowance(Base):
    """
    How many selections a voter has used for a position.

    Exactly one row per (voter, position), claimed inside the same
    transaction as the vote rows it accounts for. The conditional update
    ``choices_used + n <= max_choices`` serializes concurrent ballots from the
    same voter for the same position in the store itself.
    """

    __tablename__ = "ballot_allowances"

    __table_args__ = (
        UniqueConstraint("voter_id", "position_id", name="uq_ballot_allowances_voter_position"),
        CheckConstraint("choices_used >= 0", name="choices_used_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    voter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("voters.id", ondelete="RESTRICT"),
        nullable=False,
    )
    position_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("positions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    choices_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )


class VoteInvalidation(Base):
    """Audited correction record excluding one vote from tallies."""

    __tablename__ = "vote_invalidations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vote_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("votes.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    invalidated_by_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("voters.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
