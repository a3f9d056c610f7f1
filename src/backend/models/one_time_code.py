"""
One-time code model.

Owned by the identity flow: codes are created on request, consumed exactly
once, and superseded (deleted) by any newer unconsumed code for the same
(email, purpose). Only a salted hash of the code is stored.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from models.election import utcnow


class CodePurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    LOGIN = "login"


class OneTimeCode(Base):
    __tablename__ = "one_time_codes"

    __table_args__ = (
        Index("ix_one_time_codes_email_purpose", "email", "purpose"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    purpose: Mapped[str] = mapped_column(String(40), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
