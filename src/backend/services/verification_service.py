"""
Email verification codes.

Issues short one-time codes for the mail collaborator to deliver and marks
the voter verified when a code is confirmed. The vote path never looks at
codes; it only reads ``Voter.email_verified``.
"""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import ValidationFailed, VoterNotFound
from db.session import store_transaction
from models.one_time_code import CodePurpose
from repositories.one_time_code_repository import OneTimeCodeRepository
from repositories.voter_repository import VoterRepository
from services.notification_service import VerificationCodeSender

logger = structlog.get_logger(__name__)


class EmailVerificationService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        sender: Optional[VerificationCodeSender] = None,
    ):
        self.session_factory = session_factory
        self.sender = sender or VerificationCodeSender()

    async def request_code(self, email: str) -> str:
        """
        Issue a fresh verification code for a registered voter.

        Raises:
            VoterNotFound: no voter with this email (administrators included)
            ValidationFailed: the email is already verified
        """
        async with store_transaction(self.session_factory, "request_verification_code") as db:
            voter = await VoterRepository(db).get_by_email(email)
            if not voter or voter.is_admin:
                raise VoterNotFound("No voter is registered with this email")
            if voter.email_verified:
                raise ValidationFailed("Email is already verified", reason="ALREADY_VERIFIED")
            record, code = await OneTimeCodeRepository(db).issue(email, CodePurpose.EMAIL_VERIFICATION)

        logger.info("verification_code_issued", code_id=record.id)
        return code

    async def send_code(self, email: str) -> bool:
        """Issue a code and hand it to the mail relay. True if the relay accepted it."""
        code = await self.request_code(email)
        return await self.sender.send_code(email, code, settings.ONE_TIME_CODE_TTL_MINUTES)

    async def confirm(self, email: str, code: str) -> bool:
        """Consume a code and mark the voter's email verified. False if the code is wrong or expired."""
        async with store_transaction(self.session_factory, "confirm_verification_code") as db:
            consumed = await OneTimeCodeRepository(db).consume(email, CodePurpose.EMAIL_VERIFICATION, code)
            if consumed:
                await VoterRepository(db).mark_email_verified(email)

        logger.info("verification_code_checked", verified=consumed)
        return consumed
