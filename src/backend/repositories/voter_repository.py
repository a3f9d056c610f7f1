"""
Voter repository for database operations.
"""

from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.election import Department
from models.voter import Voter


class VoterRepository:
    """Repository for voter and department database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, voter_id: int) -> Optional[Voter]:
        """Get a voter by ID."""
        result = await self.db.execute(select(Voter).where(Voter.id == voter_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Voter]:
        """Get a voter by email (case-insensitive)."""
        result = await self.db.execute(
            select(Voter).where(func.lower(Voter.email) == email.lower().strip())
        )
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> Voter:
        """Register a voter."""
        voter = Voter(**fields)
        self.db.add(voter)
        await self.db.flush()
        return voter

    async def mark_email_verified(self, email: str) -> bool:
        """Mark a voter's email as verified."""
        result = await self.db.execute(
            update(Voter)
            .where(func.lower(Voter.email) == email.lower().strip())
            .values(email_verified=True)
            .execution_options(synchronize_session=False)
        )
        return (getattr(result, "rowcount", 0) or 0) > 0

    async def get_department(self, department_id: int) -> Optional[Department]:
        result = await self.db.execute(select(Department).where(Department.id == department_id))
        return result.scalar_one_or_none()

    async def get_department_by_name(self, name: str) -> Optional[Department]:
        result = await self.db.execute(
            select(Department).where(func.lower(Department.name) == name.lower().strip())
        )
        return result.scalar_one_or_none()

    async def create_department(self, name: str) -> Department:
        department = Department(name=name)
        self.db.add(department)
        await self.db.flush()
        return department
