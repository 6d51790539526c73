"""
Session Model — Tracks application session lifecycle.
Maps to the 'application_sessions' table.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Boolean

from card_application.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationSession(Base):
    __tablename__ = "application_sessions"

    id = Column(String(36), primary_key=True, index=True)
    application_id = Column(String(32), unique=True, index=True)
    user_id = Column(String(64), nullable=True)
    mode = Column(String(16), default="SELF")     # SELF | ASSISTED

    is_active = Column(Boolean, default=True)
    otp_verified = Column(Boolean, default=False)
    verified_mobile = Column(String(11), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    ip_address = Column(String(45))
    user_agent = Column(String(256))


def as_utc(moment: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored moment is UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)
