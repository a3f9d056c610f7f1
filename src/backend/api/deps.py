"""
Shared dependencies for API endpoints.

Includes:
- Voter JWT authentication, resolved into an explicit VoterContext
- Admin gate
- Engine services bound to the request's session factory
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.security import decode_token
from db.session import get_db, get_session_factory_dependency
from models.voter import Voter
from repositories.voter_repository import VoterRepository
from schemas.voter import VoterContext
from services.election_lifecycle import ElectionLifecycleController
from services.election_service import ElectionService
from services.eligibility import EligibilityGate
from services.notification_service import ResultsNotifier, VerificationCodeSender
from services.tally_service import TallyAggregator
from services.verification_service import EmailVerificationService
from services.vote_recorder import VoteRecorder

logger = structlog.get_logger(__name__)

# Security schemes
security = HTTPBearer()

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory_dependency)]


# =============================================================================
# Helper Functions
# =============================================================================


def _voter_model_to_context(voter: Voter) -> VoterContext:
    """Convert a Voter SQLAlchemy model to the VoterContext passed into the engine."""
    return VoterContext(
        id=voter.id,
        email=voter.email,
        department_id=voter.department_id,
        email_verified=voter.email_verified,
        is_admin=voter.is_admin,
    )


# =============================================================================
# Voter Authentication (JWT-based)
# =============================================================================


async def get_current_voter(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: AsyncSession = Depends(get_db),
) -> VoterContext:
    """
    Extract and validate the current voter from the JWT token.

    Raises:
        HTTPException: If token is invalid or voter not found.
    """
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    try:
        voter_id = int(subject)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    voter = await VoterRepository(db).get_by_id(voter_id)
    if not voter:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Voter not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _voter_model_to_context(voter)


async def get_current_admin(
    current_voter: Annotated[VoterContext, Depends(get_current_voter)],
) -> VoterContext:
    """
    Ensure the current voter is an admin.

    Raises:
        HTTPException: If the voter is not an admin.
    """
    if not current_voter.is_admin:
        logger.warning("non_admin_access_attempt", voter_id=current_voter.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_voter


# =============================================================================
# Engine services
# =============================================================================


def get_results_notifier() -> ResultsNotifier:
    return ResultsNotifier()


def get_vote_recorder(session_factory: SessionFactory) -> VoteRecorder:
    return VoteRecorder(session_factory)


def get_eligibility_gate(session_factory: SessionFactory) -> EligibilityGate:
    return EligibilityGate(session_factory)


def get_tally_aggregator(session_factory: SessionFactory) -> TallyAggregator:
    return TallyAggregator(session_factory)


def get_lifecycle_controller(
    session_factory: SessionFactory,
    notifier: Annotated[ResultsNotifier, Depends(get_results_notifier)],
) -> ElectionLifecycleController:
    return ElectionLifecycleController(session_factory, notifier=notifier)


def get_election_service(session_factory: SessionFactory) -> ElectionService:
    return ElectionService(session_factory)


def get_verification_code_sender() -> VerificationCodeSender:
    return VerificationCodeSender()


def get_verification_service(
    session_factory: SessionFactory,
    sender: Annotated[VerificationCodeSender, Depends(get_verification_code_sender)],
) -> EmailVerificationService:
    return EmailVerificationService(session_factory, sender=sender)
