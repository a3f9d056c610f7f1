"""
Election structure models.

An Election owns its Positions and a Position owns its Candidates. Vote
counts are never stored on these rows; tallies are always derived from the
votes ledger.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ElectionStatus(str, Enum):
    """Election lifecycle status. Transitions are strictly forward."""

    DRAFT = "DRAFT"  # Structure editable, no votes
    RUNNING = "RUNNING"  # Accepting votes, structure frozen
    CLOSED = "CLOSED"  # No more votes, results final
    ARCHIVED = "ARCHIVED"  # Retained for audit only


class ElectionCategory(str, Enum):
    """Who an election is for."""

    INSTITUTION = "INSTITUTION"  # Institution-wide (student union, SRC)
    DEPARTMENT = "DEPARTMENT"  # Scoped to one department's voters


class Department(Base):
    """An academic or organisational department."""

    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )


class Election(Base):
    """
    An election and its lifecycle state.

    Voting window (starts_at/ends_at) is optional; when set it narrows the
    RUNNING state further, it never widens it.
    """

    __tablename__ = "elections"

    __table_args__ = (
        Index("ix_elections_status_category", "status", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(
        String(20),
        default=ElectionCategory.INSTITUTION.value,
        nullable=False,
    )
    department_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("departments.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=ElectionStatus.DRAFT.value,
        nullable=False,
        index=True,
    )
    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("voters.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Voting window
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Lifecycle timestamps
    opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    # Relationships
    department = relationship("Department")
    positions = relationship(
        "Position",
        back_populates="election",
        cascade="all, delete-orphan",
        order_by="Position.name",
    )


class Position(Base):
    """An office being elected, e.g. "President". Name is unique per election."""

    __tablename__ = "positions"

    __table_args__ = (
        UniqueConstraint("election_id", "name", name="uq_positions_election_name"),
        CheckConstraint("max_choices >= 1", name="max_choices_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    election_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("elections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Number of candidates a voter may select for this position
    max_choices: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    # Relationships
    election = relationship("Election", back_populates="positions")
    candidates = relationship(
        "Candidate",
        back_populates="position",
        cascade="all, delete-orphan",
        order_by="Candidate.id",
    )


class Candidate(Base):
    """
    A candidate standing for one position.

    Either linked to a registered voter (self-candidacy) or carrying a free
    text display name. Creation order (created_at, id) is the tally
    tie-break.
    """

    __tablename__ = "candidates"

    __table_args__ = (
        # Target of the votes composite foreign key: a vote's candidate must
        # belong to the vote's position.
        UniqueConstraint("id", "position_id", name="uq_candidates_id_position"),
        Index("ix_candidates_position_created", "position_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    position_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("positions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("voters.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    manifesto: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    # Relationships
    position = relationship("Position", back_populates="candidates")
