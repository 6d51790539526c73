"""
OTP Service — One-time password challenges for the pre-application step.

Codes are six digits, stored only as keyed hashes, and expire after
OTP_EXPIRY_SECONDS. A challenge allows OTP_MAX_ATTEMPTS verifications; the
failure that uses up the last attempt locks the challenge for
OTP_LOCK_SECONDS, after which a new code must be requested.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.core.errors import RateLimitedError
from card_application.models.otp import OtpChallenge
from card_application.models.session import as_utc, utcnow
from card_application.schemas.schemas import OtpAttemptState
from card_application.services.notification_service import NotificationService
from card_application.services.session_service import SessionService
from card_application.utils.hashing import generate_otp, hash_otp, verify_otp
from card_application.utils.logger import get_logger
from card_application.utils.validators import mask_mobile, validate_bd_mobile

logger = get_logger(__name__)


def _lock_remaining(challenge: OtpChallenge, now: datetime) -> int:
    locked_until = as_utc(challenge.locked_until)
    if locked_until is None or locked_until <= now:
        return 0
    return int((locked_until - now).total_seconds()) + 1


class OtpService:
    @staticmethod
    def latest(db: Session, session_id: str, mobile_number: Optional[str] = None) -> Optional[OtpChallenge]:
        query = db.query(OtpChallenge).filter(OtpChallenge.session_id == session_id)
        if mobile_number:
            query = query.filter(OtpChallenge.mobile_number == mobile_number)
        return query.order_by(OtpChallenge.id.desc()).first()

    @staticmethod
    def request(db: Session, session_id: str, mobile_number: str) -> OtpChallenge:
        """Issue a fresh code and send it by SMS. Refused while a challenge is locked."""
        if not validate_bd_mobile(mobile_number):
            raise ValueError("Enter a valid Bangladesh mobile number (01XXXXXXXXX)")
        SessionService.require_active(db, session_id)

        now = utcnow()
        previous = OtpService.latest(db, session_id, mobile_number)
        if previous is not None and _lock_remaining(previous, now):
            wait = _lock_remaining(previous, now)
            raise RateLimitedError(f"Too many failed attempts. Try again in {wait} seconds.", wait, "otp")

        settings = get_settings()
        code = generate_otp(settings.OTP_LENGTH)
        challenge = OtpChallenge(
            session_id=session_id,
            mobile_number=mobile_number,
            code_hash=hash_otp(code, session_id, mobile_number),
            max_attempts=settings.OTP_MAX_ATTEMPTS,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.OTP_EXPIRY_SECONDS),
        )
        db.add(challenge)
        db.commit()

        NotificationService.send_otp(mobile_number, code, settings.OTP_EXPIRY_SECONDS)
        logger.info(f"OTP issued to {mask_mobile(mobile_number)} for session {session_id}")
        return challenge

    @staticmethod
    def verify(db: Session, session_id: str, mobile_number: str, code: str) -> Tuple[bool, str, OtpChallenge]:
        """Check a code. Returns (verified, message, challenge)."""
        session = SessionService.require_active(db, session_id)
        challenge = OtpService.latest(db, session_id, mobile_number)
        if challenge is None:
            raise LookupError("No OTP has been requested for this number")

        now = utcnow()
        wait = _lock_remaining(challenge, now)
        if wait:
            raise RateLimitedError(f"Too many failed attempts. Try again in {wait} seconds.", wait, "otp")
        if challenge.verified_at is not None:
            return True, "Mobile number already verified", challenge
        if challenge.attempts >= challenge.max_attempts:
            return False, "No attempts remaining. Request a new code.", challenge
        if as_utc(challenge.expires_at) <= now:
            return False, "OTP has expired. Request a new code.", challenge

        challenge.attempts += 1
        challenge.last_attempt_at = now
        if verify_otp(code, session_id, mobile_number, challenge.code_hash):
            challenge.verified_at = now
            session.otp_verified = True
            session.verified_mobile = mobile_number
            db.commit()
            logger.info(f"OTP verified for session {session_id}")
            return True, "Mobile number verified", challenge

        remaining = challenge.max_attempts - challenge.attempts
        if remaining <= 0:
            challenge.locked_until = now + timedelta(seconds=get_settings().OTP_LOCK_SECONDS)
            message = "Too many failed attempts. Request a new code shortly."
        else:
            message = f"Invalid OTP. {remaining} attempt{'s' if remaining != 1 else ''} remaining."
        db.commit()
        logger.info(f"OTP mismatch for session {session_id} ({remaining} left)")
        return False, message, challenge

    @staticmethod
    def attempt_state(challenge: OtpChallenge, now: Optional[datetime] = None) -> OtpAttemptState:
        now = now or utcnow()
        wait = _lock_remaining(challenge, now)
        return OtpAttemptState(
            mobile_number=mask_mobile(challenge.mobile_number),
            remaining_attempts=max(0, challenge.max_attempts - challenge.attempts),
            max_attempts=challenge.max_attempts,
            is_locked=bool(wait),
            lock_expires_at=as_utc(challenge.locked_until) if wait else None,
            cooldown_seconds=wait or None,
            last_attempt_at=as_utc(challenge.last_attempt_at),
        )
