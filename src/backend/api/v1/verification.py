"""
Email verification endpoints.

A registered voter asks for a one-time code, receives it by mail and
confirms it here. Confirming marks the email verified, which the vote
path requires.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from api.deps import get_verification_service
from core.exceptions import ValidationFailed
from schemas.voter import VerificationCodeRequest, VerificationConfirm, VerificationResponse
from services.verification_service import EmailVerificationService

router = APIRouter()

Verification = Annotated[EmailVerificationService, Depends(get_verification_service)]


@router.post("/request", response_model=VerificationResponse, status_code=status.HTTP_202_ACCEPTED)
async def request_code(data: VerificationCodeRequest, service: Verification) -> VerificationResponse:
    """Send a fresh verification code, replacing any earlier one."""
    delivered = await service.send_code(data.email)
    if not delivered:
        return VerificationResponse(
            success=False,
            message="A code was issued but could not be delivered, please try again later",
        )
    return VerificationResponse(success=True, message="A verification code was sent to your email")


@router.post("/confirm", response_model=VerificationResponse)
async def confirm_code(data: VerificationConfirm, service: Verification) -> VerificationResponse:
    """Confirm a code and mark the email verified."""
    if not await service.confirm(data.email, data.code.strip()):
        raise ValidationFailed("Invalid or expired code", reason="INVALID_CODE")
    return VerificationResponse(success=True, message="Email verified successfully")
