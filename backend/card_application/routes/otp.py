"""
OTP Routes — Mobile number verification for the pre-application step.
Handles: request, verify, resend, attempt status.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.database import get_db
from card_application.routes.errors import HANDLED, to_http
from card_application.schemas.schemas import (
    OtpAttemptState, OtpRequest, OtpRequestResponse, OtpVerifyRequest, OtpVerifyResponse,
)
from card_application.services.otp_service import OtpService
from card_application.utils.rate_limiter import rate_limit
from card_application.utils.validators import mask_mobile

settings = get_settings()

router = APIRouter(prefix="/api/auth/otp", tags=["OTP"])

otp_throttle = rate_limit(settings.OTP_RATE_LIMIT, settings.OTP_RATE_WINDOW, "otp")


def _issue(payload: OtpRequest, db: Session) -> OtpRequestResponse:
    try:
        challenge = OtpService.request(db, payload.session_id, payload.mobile_number)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return OtpRequestResponse(
        success=True,
        masked_mobile=mask_mobile(challenge.mobile_number),
        expires_in_seconds=settings.OTP_EXPIRY_SECONDS,
        attempt_state=OtpService.attempt_state(challenge),
    )


@router.post("/request", response_model=OtpRequestResponse)
def request_otp(payload: OtpRequest, db: Session = Depends(get_db), _throttle: bool = Depends(otp_throttle)):
    """Send a one-time code to the applicant's mobile number."""
    return _issue(payload, db)


@router.post("/resend", response_model=OtpRequestResponse)
def resend_otp(payload: OtpRequest, db: Session = Depends(get_db), _throttle: bool = Depends(otp_throttle)):
    """Replace the current code with a new one."""
    return _issue(payload, db)


@router.post("/verify", response_model=OtpVerifyResponse)
def verify_otp(payload: OtpVerifyRequest, db: Session = Depends(get_db)):
    try:
        verified, message, challenge = OtpService.verify(db, payload.session_id, payload.mobile_number, payload.otp)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return OtpVerifyResponse(verified=verified, message=message, attempt_state=OtpService.attempt_state(challenge))


@router.get("/status", response_model=OtpAttemptState)
def otp_status(
    session_id: str = Query(..., alias="sessionId"),
    mobile_number: Optional[str] = Query(None, alias="mobileNumber"),
    db: Session = Depends(get_db),
):
    challenge = OtpService.latest(db, session_id, mobile_number)
    if challenge is None:
        raise HTTPException(status_code=404, detail="No OTP has been requested")
    return OtpService.attempt_state(challenge)
