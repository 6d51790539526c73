"""
Draft Models — Server-held application drafts with per-step versioning.
Maps to the 'drafts' and 'draft_steps' tables.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship

from card_application.database import Base
from card_application.models.session import utcnow


class Draft(Base):
    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    session_id = Column(String(36), ForeignKey("application_sessions.id"), unique=True, nullable=False, index=True)
    application_id = Column(String(32), nullable=False)

    current_step = Column(Integer, default=0)
    highest_completed_step = Column(Integer, default=-1)
    draft_version = Column(Integer, default=0)   # Counts every accepted step save

    status = Column(String(24), default="DRAFT")
    reference_number = Column(String(24), unique=True, nullable=True)
    is_submitted = Column(Boolean, default=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_saved_at = Column(DateTime(timezone=True), default=utcnow)

    steps = relationship(
        "DraftStep", back_populates="draft", cascade="all, delete-orphan", order_by="DraftStep.step_number",
    )


class DraftStep(Base):
    __tablename__ = "draft_steps"
    __table_args__ = (UniqueConstraint("draft_id", "step_number", name="uq_draft_step"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    draft_id = Column(Integer, ForeignKey("drafts.id"), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)
    step_name = Column(String(32), nullable=False)

    data = Column(JSON, default=dict)
    version = Column(Integer, default=0)         # Increments by exactly 1 per accepted save
    is_complete = Column(Boolean, default=False)
    saved_at = Column(DateTime(timezone=True), default=utcnow)

    draft = relationship("Draft", back_populates="steps")
