"""
OTP Gate — local pre-checks before an OTP attempt is sent, and session
liveness helpers. Reads backend-owned state only; never mutates it.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from card_application.config import get_settings
from card_application.schemas.schemas import OtpAttemptState, RateLimitInfo, SessionState


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str = ""
    retry_after_seconds: int = 0


class OtpGate:
    @staticmethod
    def check(
        attempt_state: Optional[OtpAttemptState] = None,
        rate_limit: Optional[RateLimitInfo] = None,
    ) -> GateDecision:
        """Whether an OTP verification attempt may be sent right now."""
        if rate_limit is not None and rate_limit.is_limited:
            return GateDecision(
                allowed=False,
                reason=rate_limit.message or "Too many requests. Please wait before trying again.",
                retry_after_seconds=rate_limit.retry_after_seconds or 0,
            )
        if attempt_state is None:
            return GateDecision(allowed=True)
        if attempt_state.is_locked:
            return GateDecision(
                allowed=False,
                reason="Too many failed attempts. Please wait before trying again.",
                retry_after_seconds=attempt_state.cooldown_seconds or 0,
            )
        if attempt_state.remaining_attempts <= 0:
            return GateDecision(allowed=False, reason="No attempts remaining. Request a new code.")
        return GateDecision(allowed=True)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def session_seconds_left(session: SessionState, now: Optional[datetime] = None) -> int:
    return max(0, int((_aware(session.expires_at) - _now(now)).total_seconds()))


def session_is_live(session: Optional[SessionState], now: Optional[datetime] = None) -> bool:
    """Active and not past its expiry."""
    return session is not None and session.is_active and session_seconds_left(session, now) > 0


def session_needs_warning(session: Optional[SessionState], now: Optional[datetime] = None) -> bool:
    """Live, but within the expiry-warning window."""
    if not session_is_live(session, now):
        return False
    return session_seconds_left(session, now) <= get_settings().SESSION_WARNING_SECONDS
