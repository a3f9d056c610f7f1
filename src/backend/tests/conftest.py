"""
Pytest fixtures for Ballotline backend tests.

Engine tests run against a real SQLite database file (through aiosqlite) so
transactions, constraints and concurrent sessions behave like a real store.
"""

import os
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("STORE_TIMEOUT_SECONDS", "5")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402


@pytest.fixture
async def session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh SQLite ledger with all tables created."""
    import models  # noqa: F401
    from db.base import Base
    from db.session import create_engine_for_url

    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def quiet_notifier() -> Any:
    """Results notifier that only logs."""
    from services.notification_service import ResultsNotifier

    return ResultsNotifier(webhook_url="")


@pytest.fixture
def election_service(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    from services.election_service import ElectionService

    return ElectionService(session_factory)


@pytest.fixture
def lifecycle(session_factory: async_sessionmaker[AsyncSession], quiet_notifier: Any) -> Any:
    from services.election_lifecycle import ElectionLifecycleController

    return ElectionLifecycleController(session_factory, notifier=quiet_notifier)


@pytest.fixture
async def voters(election_service: Any) -> SimpleNamespace:
    """
    Departments and voters.

    alice, bob: verified, Engineering
    carol: unverified, Engineering
    dave: verified, Law
    admin: verified administrator
    """
    engineering = await election_service.create_department("Engineering")
    law = await election_service.create_department("Law")

    async def register(name: str, department_id: int | None, verified: bool = True, admin: bool = False) -> Any:
        return await election_service.register_voter(
            email=f"{name}@uni.edu",
            first_name=name.capitalize(),
            last_name="Tester",
            department_id=department_id,
            email_verified=verified,
            is_admin=admin,
        )

    return SimpleNamespace(
        engineering=engineering,
        law=law,
        alice=await register("alice", engineering.id),
        bob=await register("bob", engineering.id),
        carol=await register("carol", engineering.id, verified=False),
        dave=await register("dave", law.id),
        admin=await register("admin", None, admin=True),
    )


@pytest.fixture
async def draft_election(election_service: Any, voters: SimpleNamespace) -> SimpleNamespace:
    """
    Institution-wide DRAFT election.

    President (max 1): candidates A then B
    Senate (max 2): candidates X, Y, Z
    """
    election = await election_service.create_election(
        "Student Union 2026",
        created_by_id=voters.admin.id,
    )
    president = await election_service.add_position(election.id, "President", 1)
    senate = await election_service.add_position(election.id, "Senate", 2)

    candidate_a = await election_service.add_candidate(president.id, "Candidate A")
    candidate_b = await election_service.add_candidate(president.id, "Candidate B")
    candidate_x = await election_service.add_candidate(senate.id, "Candidate X")
    candidate_y = await election_service.add_candidate(senate.id, "Candidate Y")
    candidate_z = await election_service.add_candidate(senate.id, "Candidate Z")

    return SimpleNamespace(
        election=election,
        president=president,
        senate=senate,
        a=candidate_a,
        b=candidate_b,
        x=candidate_x,
        y=candidate_y,
        z=candidate_z,
    )


@pytest.fixture
async def running_election(draft_election: SimpleNamespace, lifecycle: Any) -> SimpleNamespace:
    """The draft election, opened for voting."""
    from models.election import ElectionStatus

    await lifecycle.transition_election(draft_election.election.id, ElectionStatus.RUNNING)
    return draft_election


@pytest.fixture
def recorder(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    from services.vote_recorder import VoteRecorder

    return VoteRecorder(session_factory)


@pytest.fixture
def tally(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    from services.tally_service import TallyAggregator

    return TallyAggregator(session_factory)


@pytest.fixture
async def app(session_factory: async_sessionmaker[AsyncSession], quiet_notifier: Any) -> AsyncGenerator[Any, None]:
    """FastAPI application wired to the test ledger."""
    from api.deps import get_results_notifier
    from db.session import get_db, get_session_factory_dependency
    from main import app as fastapi_app

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_session_factory_dependency] = lambda: session_factory
    fastapi_app.dependency_overrides[get_results_notifier] = lambda: quiet_notifier
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def bearer() -> Any:
    """Build an Authorization header carrying an access token for a voter."""
    from core.security import create_access_token

    def _headers(voter: Any) -> dict[str, str]:
        token = create_access_token({"sub": str(voter.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create mock database session."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session
