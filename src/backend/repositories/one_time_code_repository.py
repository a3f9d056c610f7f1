"""
One-time code repository.

Codes are superseded by newer ones, expire, and can be consumed once.
Only salted hashes are stored; the plain code is returned to the caller
exactly once, at issue time, for delivery by the mail collaborator.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.security import generate_one_time_code, hash_one_time_code, verify_one_time_code
from models.election import as_utc
from models.one_time_code import CodePurpose, OneTimeCode


class OneTimeCodeRepository:
    """Repository for one-time code database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(
        self,
        email: str,
        purpose: CodePurpose,
        ttl: Optional[timedelta] = None,
    ) -> tuple[OneTimeCode, str]:
        """Create a new code, deleting older unconsumed codes for the same email and purpose."""
        email = email.lower().strip()
        ttl = ttl or timedelta(minutes=settings.ONE_TIME_CODE_TTL_MINUTES)

        await self.db.execute(
            delete(OneTimeCode).where(
                and_(
                    OneTimeCode.email == email,
                    OneTimeCode.purpose == purpose.value,
                    OneTimeCode.consumed == False,  # noqa: E712
                )
            )
        )

        plain_code = generate_one_time_code()
        record = OneTimeCode(
            email=email,
            purpose=purpose.value,
            code_hash=hash_one_time_code(plain_code),
            expires_at=datetime.now(timezone.utc) + ttl,
            consumed=False,
        )
        self.db.add(record)
        await self.db.flush()
        return record, plain_code

    async def get_active(self, email: str, purpose: CodePurpose) -> Optional[OneTimeCode]:
        """Get the current unconsumed code for an email and purpose."""
        result = await self.db.execute(
            select(OneTimeCode)
            .where(
                and_(
                    OneTimeCode.email == email.lower().strip(),
                    OneTimeCode.purpose == purpose.value,
                    OneTimeCode.consumed == False,  # noqa: E712
                )
            )
            .order_by(OneTimeCode.created_at.desc(), OneTimeCode.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def consume(self, email: str, purpose: CodePurpose, code: str) -> bool:
        """
        Consume a code if it matches and has not expired.

        The conditional update on ``consumed`` guarantees that two concurrent
        submissions of the same code cannot both succeed.
        """
        record = await self.get_active(email, purpose)
        if record is None:
            return False

        expires_at = as_utc(record.expires_at)
        if expires_at is None or expires_at <= datetime.now(timezone.utc):
            return False

        if not verify_one_time_code(code, record.code_hash):
            return False

        result = await self.db.execute(
            update(OneTimeCode)
            .where(
                and_(
                    OneTimeCode.id == record.id,
                    OneTimeCode.consumed == False,  # noqa: E712
                )
            )
            .values(consumed=True)
            .execution_options(synchronize_session=False)
        )
        return (getattr(result, "rowcount", 0) or 0) == 1
