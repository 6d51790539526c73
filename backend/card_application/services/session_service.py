"""
Session Service — Creates, checks, extends and ends application sessions.
A session lives SESSION_TTL_MINUTES; once expired it is marked inactive.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.core.errors import SessionExpiredError
from card_application.core.forms import ApplicationMode
from card_application.models.session import ApplicationSession, as_utc, utcnow
from card_application.schemas.schemas import SessionState
from card_application.utils.logger import get_logger

logger = get_logger(__name__)


def generate_application_id(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"APP{now.strftime('%Y%m%d')}{uuid.uuid4().hex[:8].upper()}"


class SessionService:
    @staticmethod
    def create(
        db: Session,
        mode: ApplicationMode,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ApplicationSession:
        now = utcnow()
        session = ApplicationSession(
            id=str(uuid.uuid4()),
            application_id=generate_application_id(now),
            user_id=user_id,
            mode=ApplicationMode(mode).value,
            # Assisted sessions are identity-verified by bank staff
            otp_verified=ApplicationMode(mode) == ApplicationMode.ASSISTED,
            created_at=now,
            expires_at=now + timedelta(minutes=get_settings().SESSION_TTL_MINUTES),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:256],
        )
        db.add(session)
        db.commit()
        logger.info(f"Session {session.id} created ({session.mode})")
        return session

    @staticmethod
    def get(db: Session, session_id: str) -> ApplicationSession:
        """Session by id. Raises LookupError when unknown."""
        session = db.query(ApplicationSession).filter(ApplicationSession.id == session_id).first()
        if not session:
            raise LookupError("Session not found")
        return session

    @staticmethod
    def require_active(db: Session, session_id: str, now: Optional[datetime] = None) -> ApplicationSession:
        """Live session, or SessionExpiredError. Expired sessions are deactivated."""
        session = SessionService.get(db, session_id)
        now = now or utcnow()
        if session.is_active and as_utc(session.expires_at) <= now:
            session.is_active = False
            session.ended_at = now
            db.commit()
            logger.info(f"Session {session.id} expired")
        if not session.is_active:
            raise SessionExpiredError(session_id=session.id)
        return session

    @staticmethod
    def extend(db: Session, session_id: str) -> ApplicationSession:
        session = SessionService.require_active(db, session_id)
        session.expires_at = utcnow() + timedelta(minutes=get_settings().SESSION_TTL_MINUTES)
        db.commit()
        return session

    @staticmethod
    def end(db: Session, session_id: str) -> None:
        session = SessionService.get(db, session_id)
        session.is_active = False
        session.ended_at = utcnow()
        db.commit()
        logger.info(f"Session {session.id} ended")

    @staticmethod
    def to_state(session: ApplicationSession, now: Optional[datetime] = None) -> SessionState:
        now = now or utcnow()
        expires_at = as_utc(session.expires_at)
        return SessionState(
            session_id=session.id,
            application_id=session.application_id,
            user_id=session.user_id,
            mode=ApplicationMode(session.mode),
            created_at=as_utc(session.created_at),
            expires_at=expires_at,
            ttl_seconds=max(0, int((expires_at - now).total_seconds())),
            is_active=bool(session.is_active) and expires_at > now,
            otp_verified=bool(session.otp_verified),
        )
