"""
Election administration.

Creating elections and editing their structure. Every structural change
takes the election's row lock and re-checks that it is still DRAFT, so an
edit can never slip in after the election has opened.
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import (
    CandidateNotFound,
    DepartmentNotFound,
    DuplicatePosition,
    ElectionNotFound,
    PositionNotFound,
    ValidationFailed,
    VoterNotFound,
)
from db.session import store_transaction
from models.election import (
    Candidate,
    Department,
    Election,
    ElectionCategory,
    ElectionStatus,
    Position,
    as_utc,
)
from models.voter import Voter
from repositories.election_repository import ElectionRepository
from repositories.voter_repository import VoterRepository
from services.election_lifecycle import ensure_structure_editable

logger = structlog.get_logger(__name__)

EDITABLE_ELECTION_FIELDS = {"name", "category", "department_id", "starts_at", "ends_at"}
EDITABLE_CANDIDATE_FIELDS = {"display_name", "manifesto", "photo_url", "voter_id", "position_id"}


def _validate_election_fields(
    name: str,
    category: ElectionCategory,
    department_id: Optional[int],
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
) -> None:
    if not name or not name.strip():
        raise ValidationFailed("Election name must not be blank", reason="BLANK_NAME")

    if category == ElectionCategory.DEPARTMENT and department_id is None:
        raise ValidationFailed(
            "Department elections need a department",
            reason="DEPARTMENT_REQUIRED",
        )
    if category == ElectionCategory.INSTITUTION and department_id is not None:
        raise ValidationFailed(
            "Institution-wide elections cannot be scoped to a department",
            reason="DEPARTMENT_NOT_ALLOWED",
        )

    if starts_at is not None and ends_at is not None and as_utc(ends_at) <= as_utc(starts_at):
        raise ValidationFailed("Voting must end after it starts", reason="INVALID_WINDOW")


class ElectionService:
    """Administrative operations on elections, positions and candidates."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Departments and voters
    # ------------------------------------------------------------------

    async def create_department(self, name: str) -> Department:
        name = name.strip()
        if not name:
            raise ValidationFailed("Department name must not be blank", reason="BLANK_NAME")

        async with store_transaction(self.session_factory, "create_department") as db:
            repo = VoterRepository(db)
            if await repo.get_department_by_name(name):
                raise ValidationFailed(f"Department '{name}' already exists", reason="DUPLICATE_DEPARTMENT")
            department = await repo.create_department(name)

        logger.info("department_created", department_id=department.id)
        return department

    async def register_voter(
        self,
        email: str,
        first_name: str,
        last_name: str,
        student_id: Optional[str] = None,
        department_id: Optional[int] = None,
        email_verified: bool = False,
        is_admin: bool = False,
    ) -> Voter:
        """Register a voter record. Credentials live with the identity service."""
        email = email.lower().strip()
        try:
            async with store_transaction(self.session_factory, "register_voter") as db:
                repo = VoterRepository(db)
                if await repo.get_by_email(email):
                    raise ValidationFailed("A voter with this email already exists", reason="DUPLICATE_EMAIL")
                if department_id is not None and not await repo.get_department(department_id):
                    raise DepartmentNotFound(f"Department {department_id} not found")
                voter = await repo.create(
                    email=email,
                    first_name=first_name.strip(),
                    last_name=last_name.strip(),
                    student_id=student_id,
                    department_id=department_id,
                    email_verified=email_verified,
                    is_admin=is_admin,
                )
        except IntegrityError as e:
            raise ValidationFailed(
                "A voter with this email or student ID already exists",
                reason="DUPLICATE_VOTER",
            ) from e

        logger.info("voter_registered", voter_id=voter.id, is_admin=is_admin)
        return voter

    # ------------------------------------------------------------------
    # Elections
    # ------------------------------------------------------------------

    async def create_election(
        self,
        name: str,
        category: ElectionCategory = ElectionCategory.INSTITUTION,
        department_id: Optional[int] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        created_by_id: Optional[int] = None,
    ) -> Election:
        """Create an election in DRAFT."""
        category = ElectionCategory(category)
        _validate_election_fields(name, category, department_id, starts_at, ends_at)

        async with store_transaction(self.session_factory, "create_election") as db:
            if department_id is not None and not await VoterRepository(db).get_department(department_id):
                raise DepartmentNotFound(f"Department {department_id} not found")
            election = await ElectionRepository(db).create(
                name=name.strip(),
                category=category.value,
                department_id=department_id,
                starts_at=starts_at,
                ends_at=ends_at,
                created_by_id=created_by_id,
            )

        logger.info(
            "election_created",
            election_id=election.id,
            category=category.value,
            created_by=created_by_id,
        )
        return election

    async def update_election(self, election_id: int, **changes: Any) -> Election:
        """Change name, category, department or voting window of a DRAFT election."""
        unknown = set(changes) - EDITABLE_ELECTION_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot update fields: {sorted(unknown)}", reason="UNKNOWN_FIELDS")

        async with store_transaction(self.session_factory, "update_election") as db:
            election = await ElectionRepository(db).get_for_update(election_id)
            if not election:
                raise ElectionNotFound(f"Election {election_id} not found")
            ensure_structure_editable(election)

            merged = {field: getattr(election, field) for field in EDITABLE_ELECTION_FIELDS}
            merged.update(changes)
            if changes.get("category") == ElectionCategory.INSTITUTION and "department_id" not in changes:
                # Switching to institution-wide drops the department scope
                merged["department_id"] = None
            category = ElectionCategory(merged["category"])
            _validate_election_fields(
                merged["name"],
                category,
                merged["department_id"],
                merged["starts_at"],
                merged["ends_at"],
            )
            if "department_id" in changes and merged["department_id"] is not None:
                if not await VoterRepository(db).get_department(merged["department_id"]):
                    raise DepartmentNotFound(f"Department {merged['department_id']} not found")

            election.name = merged["name"].strip()
            election.category = category.value
            election.department_id = merged["department_id"]
            election.starts_at = merged["starts_at"]
            election.ends_at = merged["ends_at"]
            await db.flush()

        logger.info("election_updated", election_id=election_id, fields=sorted(changes))
        return election

    async def get_election(self, election_id: int) -> Election:
        """Get an election with its positions and candidates."""
        async with store_transaction(self.session_factory, "get_election") as db:
            election = await ElectionRepository(db).get_by_id(election_id, with_structure=True)
        if not election:
            raise ElectionNotFound(f"Election {election_id} not found")
        return election

    async def list_elections(
        self,
        status: Optional[ElectionStatus] = None,
        department_id: Optional[int] = None,
    ) -> list[Election]:
        async with store_transaction(self.session_factory, "list_elections") as db:
            return await ElectionRepository(db).list_elections(status=status, department_id=department_id)

    async def list_closed_for_department(self, department_id: Optional[int]) -> list[Election]:
        """Closed elections a member of the department may see results for."""
        async with store_transaction(self.session_factory, "list_closed_elections") as db:
            return await ElectionRepository(db).list_visible_to_department(
                department_id, ElectionStatus.CLOSED
            )

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def add_position(self, election_id: int, name: str, max_choices: int = 1) -> Position:
        name = name.strip()
        if not name:
            raise ValidationFailed("Position name must not be blank", reason="BLANK_NAME")
        if max_choices < 1:
            raise ValidationFailed("max_choices must be at least 1", reason="INVALID_MAX_CHOICES")

        try:
            async with store_transaction(self.session_factory, "add_position") as db:
                repo = ElectionRepository(db)
                election = await repo.get_for_update(election_id)
                if not election:
                    raise ElectionNotFound(f"Election {election_id} not found")
                ensure_structure_editable(election)

                if await repo.get_position_by_name(election_id, name):
                    raise DuplicatePosition(f"Position '{name}' already exists in this election")
                position = await repo.add_position(election_id, name, max_choices)
        except IntegrityError as e:
            raise DuplicatePosition(f"Position '{name}' already exists in this election") from e

        logger.info("position_added", election_id=election_id, position_id=position.id)
        return position

    async def update_position(
        self,
        position_id: int,
        name: Optional[str] = None,
        max_choices: Optional[int] = None,
    ) -> Position:
        if max_choices is not None and max_choices < 1:
            raise ValidationFailed("max_choices must be at least 1", reason="INVALID_MAX_CHOICES")

        try:
            async with store_transaction(self.session_factory, "update_position") as db:
                repo = ElectionRepository(db)
                position = await self._get_editable_position(repo, position_id)

                if name is not None:
                    name = name.strip()
                    if not name:
                        raise ValidationFailed("Position name must not be blank", reason="BLANK_NAME")
                    existing = await repo.get_position_by_name(position.election_id, name)
                    if existing and existing.id != position.id:
                        raise DuplicatePosition(f"Position '{name}' already exists in this election")
                    position.name = name
                if max_choices is not None:
                    position.max_choices = max_choices
                await db.flush()
        except IntegrityError as e:
            raise DuplicatePosition(f"Position '{name}' already exists in this election") from e

        logger.info("position_updated", position_id=position_id)
        return position

    async def remove_position(self, position_id: int) -> None:
        """Remove a position that has no candidates."""
        async with store_transaction(self.session_factory, "remove_position") as db:
            repo = ElectionRepository(db)
            await self._get_editable_position(repo, position_id)
            if await repo.count_candidates(position_id) > 0:
                raise ValidationFailed(
                    "Remove the position's candidates first",
                    reason="POSITION_HAS_CANDIDATES",
                )
            await repo.delete_position(position_id)

        logger.info("position_removed", position_id=position_id)

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def add_candidate(
        self,
        position_id: int,
        display_name: Optional[str] = None,
        voter_id: Optional[int] = None,
        manifesto: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> Candidate:
        """
        Add a candidate to a position.

        A candidate linked to a voter must be a registered non-admin voter;
        their full name is used when no display name is given.
        """
        async with store_transaction(self.session_factory, "add_candidate") as db:
            repo = ElectionRepository(db)
            position = await self._get_editable_position(repo, position_id)

            if voter_id is not None:
                voter = await VoterRepository(db).get_by_id(voter_id)
                if not voter:
                    raise VoterNotFound(f"Voter {voter_id} not found")
                if voter.is_admin:
                    raise ValidationFailed(
                        "Administrators cannot stand as candidates",
                        reason="ADMIN_CANDIDATE",
                    )
                display_name = display_name or voter.full_name

            if not display_name or not display_name.strip():
                raise ValidationFailed("Candidate needs a display name", reason="BLANK_NAME")

            candidate = await repo.add_candidate(
                position.id,
                display_name.strip(),
                voter_id=voter_id,
                manifesto=manifesto,
                photo_url=photo_url,
            )

        logger.info("candidate_added", position_id=position_id, candidate_id=candidate.id)
        return candidate

    async def update_candidate(self, candidate_id: int, **changes: Any) -> Candidate:
        """
        Edit a candidate of a DRAFT election.

        ``position_id`` may move the candidate to another position of the
        same election. ``voter_id`` relinks the candidate to a non-admin voter.
        """
        unknown = set(changes) - EDITABLE_CANDIDATE_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot update fields: {sorted(unknown)}", reason="UNKNOWN_FIELDS")

        async with store_transaction(self.session_factory, "update_candidate") as db:
            repo = ElectionRepository(db)
            candidate = await repo.get_candidate(candidate_id)
            if not candidate:
                raise CandidateNotFound(f"Candidate {candidate_id} not found")
            await self._get_editable_position(repo, candidate.position_id)

            if "display_name" in changes:
                display_name = changes["display_name"]
                if not display_name or not display_name.strip():
                    raise ValidationFailed("Candidate needs a display name", reason="BLANK_NAME")
                changes["display_name"] = display_name.strip()

            target = changes.get("position_id")
            if target is not None and target != candidate.position_id:
                position = await repo.get_position(target)
                if not position:
                    raise PositionNotFound(f"Position {target} not found")
                if position.election_id != candidate.position.election_id:
                    raise ValidationFailed(
                        "Candidates can only move within their election",
                        reason="POSITION_MISMATCH",
                    )
            elif "position_id" in changes:
                changes.pop("position_id")

            voter_id = changes.get("voter_id")
            if voter_id is not None:
                voter = await VoterRepository(db).get_by_id(voter_id)
                if not voter:
                    raise VoterNotFound(f"Voter {voter_id} not found")
                if voter.is_admin:
                    raise ValidationFailed(
                        "Administrators cannot stand as candidates",
                        reason="ADMIN_CANDIDATE",
                    )

            for field, value in changes.items():
                setattr(candidate, field, value)
            await db.flush()

        logger.info("candidate_updated", candidate_id=candidate_id, fields=sorted(changes))
        return candidate

    async def remove_candidate(self, candidate_id: int) -> None:
        async with store_transaction(self.session_factory, "remove_candidate") as db:
            repo = ElectionRepository(db)
            candidate = await repo.get_candidate(candidate_id)
            if not candidate:
                raise CandidateNotFound(f"Candidate {candidate_id} not found")
            await self._get_editable_position(repo, candidate.position_id)
            await repo.delete_candidate(candidate_id)

        logger.info("candidate_removed", candidate_id=candidate_id)

    async def _get_editable_position(self, repo: ElectionRepository, position_id: int) -> Position:
        position = await repo.get_position(position_id)
        if not position:
            raise PositionNotFound(f"Position {position_id} not found")
        election = await repo.get_for_update(position.election_id)
        ensure_structure_editable(election)
        return position
