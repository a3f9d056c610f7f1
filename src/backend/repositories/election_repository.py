"""
Election repository for database operations.

Covers elections and the structure they own (positions, candidates).
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models.election import Candidate, Election, ElectionCategory, ElectionStatus, Position


class ElectionRepository:
    """Repository for election, position and candidate database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    # ------------------------------------------------------------------
    # Elections
    # ------------------------------------------------------------------

    async def get_by_id(self, election_id: int, with_structure: bool = False) -> Optional[Election]:
        """Get an election, optionally with positions and candidates loaded."""
        query = select(Election).where(Election.id == election_id)
        if with_structure:
            query = query.options(selectinload(Election.positions).selectinload(Position.candidates))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_for_update(self, election_id: int) -> Optional[Election]:
        """Get an election and lock its row until the transaction ends."""
        result = await self.db.execute(
            select(Election)
            .where(Election.id == election_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_share(self, election_id: int) -> Optional[Election]:
        """
        Get an election with a shared row lock.

        Held by ballot writers so a concurrent status transition waits for
        in-flight ballots instead of interleaving with them.
        """
        result = await self.db.execute(
            select(Election)
            .where(Election.id == election_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_elections(
        self,
        status: Optional[ElectionStatus] = None,
        department_id: Optional[int] = None,
    ) -> list[Election]:
        """List elections, newest first."""
        query = select(Election)
        if status is not None:
            query = query.where(Election.status == status.value)
        if department_id is not None:
            query = query.where(Election.department_id == department_id)
        result = await self.db.execute(query.order_by(Election.created_at.desc(), Election.id.desc()))
        return list(result.scalars().all())

    async def list_visible_to_department(
        self,
        department_id: Optional[int],
        status: ElectionStatus,
        with_structure: bool = False,
    ) -> list[Election]:
        """Institution-wide elections plus those of one department, newest first."""
        query = select(Election).where(
            and_(
                Election.status == status.value,
                or_(
                    Election.category == ElectionCategory.INSTITUTION.value,
                    and_(
                        Election.category == ElectionCategory.DEPARTMENT.value,
                        Election.department_id == department_id,
                    ),
                ),
            )
        )
        if with_structure:
            query = query.options(selectinload(Election.positions).selectinload(Position.candidates))
        result = await self.db.execute(query.order_by(Election.created_at.desc(), Election.id.desc()))
        return list(result.scalars().all())

    async def create(self, **fields: Any) -> Election:
        """Create a new election in DRAFT."""
        election = Election(status=ElectionStatus.DRAFT.value, **fields)
        self.db.add(election)
        await self.db.flush()
        return election

    async def transition_status(
        self,
        election_id: int,
        from_status: ElectionStatus,
        to_status: ElectionStatus,
        **stamps: datetime,
    ) -> bool:
        """
        Move an election from one status to another.

        The WHERE clause on the current status makes concurrent transitions
        safe: only one writer can move the election out of ``from_status``.
        """
        result = await self.db.execute(
            update(Election)
            .where(
                and_(
                    Election.id == election_id,
                    Election.status == from_status.value,
                )
            )
            .values(status=to_status.value, **stamps)
            .execution_options(synchronize_session=False)
        )
        return self._get_rowcount(result) == 1

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def get_position(self, position_id: int) -> Optional[Position]:
        """Get a position with its election and candidates."""
        result = await self.db.execute(
            select(Position)
            .options(selectinload(Position.election), selectinload(Position.candidates))
            .where(Position.id == position_id)
        )
        return result.scalar_one_or_none()

    async def get_position_by_name(self, election_id: int, name: str) -> Optional[Position]:
        result = await self.db.execute(
            select(Position).where(
                and_(
                    Position.election_id == election_id,
                    func.lower(Position.name) == name.lower(),
                )
            )
        )
        return result.scalar_one_or_none()

    async def add_position(self, election_id: int, name: str, max_choices: int) -> Position:
        position = Position(election_id=election_id, name=name, max_choices=max_choices, candidates=[])
        self.db.add(position)
        await self.db.flush()
        return position

    async def delete_position(self, position_id: int) -> bool:
        result = await self.db.execute(delete(Position).where(Position.id == position_id))
        return self._get_rowcount(result) > 0

    async def count_candidates(self, position_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Candidate.id)).where(Candidate.position_id == position_id)
        )
        return result.scalar() or 0

    async def get_position_candidate_counts(self, election_id: int) -> dict[str, int]:
        """Map each position name of an election to its number of candidates."""
        result = await self.db.execute(
            select(Position.name, func.count(Candidate.id))
            .select_from(Position)
            .join(Candidate, Candidate.position_id == Position.id, isouter=True)
            .where(Position.election_id == election_id)
            .group_by(Position.id, Position.name)
        )
        return {str(name): int(count) for name, count in result.all()}

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def get_candidate(self, candidate_id: int) -> Optional[Candidate]:
        """Get a candidate with its position and election."""
        result = await self.db.execute(
            select(Candidate)
            .options(selectinload(Candidate.position).selectinload(Position.election))
            .where(Candidate.id == candidate_id)
        )
        return result.scalar_one_or_none()

    async def add_candidate(
        self,
        position_id: int,
        display_name: str,
        voter_id: Optional[int] = None,
        manifesto: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> Candidate:
        candidate = Candidate(
            position_id=position_id,
            display_name=display_name,
            voter_id=voter_id,
            manifesto=manifesto,
            photo_url=photo_url,
        )
        self.db.add(candidate)
        await self.db.flush()
        return candidate

    async def delete_candidate(self, candidate_id: int) -> bool:
        result = await self.db.execute(delete(Candidate).where(Candidate.id == candidate_id))
        return self._get_rowcount(result) > 0
