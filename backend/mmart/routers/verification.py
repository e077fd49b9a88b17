from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mmart.core.auth import get_current_user
from mmart.core.deps import get_db, get_verification_issuer
from mmart.models.user import User
from mmart.models.verification_code import VerificationChannel
from mmart.schemas.verification import (
    SendCodeResponse,
    VerificationStatusResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from mmart.services.verification import VerificationCodeIssuer

router = APIRouter()


@router.post("/{channel}/send", response_model=SendCodeResponse)
def send_code(
    channel: VerificationChannel,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    issuer: VerificationCodeIssuer = Depends(get_verification_issuer),
):
    """Issue a fresh code, replacing any earlier one. A failed send still leaves the code valid."""
    if issuer.is_verified(user, channel):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Your {channel.value} is already verified",
        )
    issued = issuer.issue(db, user, channel)
    if issued.delivered:
        message = f"Verification code sent to your {channel.value}"
    else:
        message = f"We could not deliver the code to your {channel.value}. Please request a new one."
    return SendCodeResponse(
        sent=issued.delivered,
        expires_in_minutes=issuer.expire_minutes,
        message=message,
    )


@router.post("/{channel}/verify", response_model=VerifyCodeResponse)
def verify_code(
    channel: VerificationChannel,
    body: VerifyCodeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    issuer: VerificationCodeIssuer = Depends(get_verification_issuer),
):
    if issuer.is_verified(user, channel):
        return VerifyCodeResponse(verified=True, message=f"Your {channel.value} is already verified")
    if not issuer.verify(db, user, channel, body.code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired code",
        )
    return VerifyCodeResponse(verified=True, message=f"Your {channel.value} has been verified")


@router.get("/{channel}/status", response_model=VerificationStatusResponse)
def verification_status(
    channel: VerificationChannel,
    user: User = Depends(get_current_user),
):
    return VerificationStatusResponse(
        channel=channel.value,
        contact=VerificationCodeIssuer.contact_for(user, channel),
        verified=VerificationCodeIssuer.is_verified(user, channel),
    )
