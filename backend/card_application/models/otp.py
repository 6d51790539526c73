"""
OTP Challenge Model — One-time passwords for the pre-application step.
Codes are stored only as keyed hashes.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from card_application.database import Base
from card_application.models.session import utcnow


class OtpChallenge(Base):
    __tablename__ = "otp_challenges"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    session_id = Column(String(36), ForeignKey("application_sessions.id"), nullable=False, index=True)
    mobile_number = Column(String(11), nullable=False)

    code_hash = Column(String(64), nullable=False)
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=5)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
