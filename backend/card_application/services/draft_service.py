"""
Draft Service — Server-side draft storage with per-step versioning.

Every accepted save of a step increments that step's version by exactly one
and the draft-wide counter by one. Saves are refused once the draft has been
submitted or the session is no longer active.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from card_application.core.draft import ApplicationDraft, apply_step_payload
from card_application.core.errors import DraftClosedError
from card_application.core.forms import ApplicationMode, ApplicationStatus, DraftVersion
from card_application.core.reconcile import step_key
from card_application.core.steps import FIRST_STEP, step_at
from card_application.models.draft import Draft, DraftStep
from card_application.models.session import ApplicationSession, as_utc, utcnow
from card_application.schemas.schemas import DraftSaveRequest, DraftState
from card_application.services.session_service import SessionService
from card_application.utils.logger import get_logger

logger = get_logger(__name__)


class DraftService:
    @staticmethod
    def initialize(db: Session, session_id: str) -> Draft:
        """Draft for a live session, created on first use."""
        session = SessionService.require_active(db, session_id)
        draft = db.query(Draft).filter(Draft.session_id == session_id).first()
        if draft:
            return draft
        start = FIRST_STEP + 1 if session.mode == ApplicationMode.ASSISTED.value else FIRST_STEP
        draft = Draft(
            session_id=session.id,
            application_id=session.application_id,
            current_step=start,
            last_saved_at=utcnow(),
        )
        db.add(draft)
        db.commit()
        logger.info(f"Draft initialized for session {session_id}")
        return draft

    @staticmethod
    def get(db: Session, session_id: str) -> Optional[Draft]:
        """Draft of a known session, or None if nothing was saved yet."""
        SessionService.get(db, session_id)
        return db.query(Draft).filter(Draft.session_id == session_id).first()

    @staticmethod
    def save_step(db: Session, request: DraftSaveRequest) -> DraftStep:
        definition = step_at(request.step_number)
        if definition is None or definition.name != request.step_name:
            raise ValueError(f"Step {request.step_number} is not named '{request.step_name}'")

        draft = DraftService.initialize(db, request.session_id)
        if draft.is_submitted:
            raise DraftClosedError("Application already submitted")

        step = next((s for s in draft.steps if s.step_number == request.step_number), None)
        if step is None:
            step = DraftStep(step_number=request.step_number, step_name=request.step_name, version=0)
            draft.steps.append(step)

        now = utcnow()
        step.data = request.data
        step.version = (step.version or 0) + 1
        step.is_complete = request.is_step_complete
        step.saved_at = now

        draft.draft_version = (draft.draft_version or 0) + 1
        draft.current_step = max(draft.current_step or 0, request.step_number)
        if request.is_step_complete:
            draft.highest_completed_step = max(draft.highest_completed_step, request.step_number)
        draft.last_saved_at = now
        db.commit()
        logger.debug(f"Saved step {step.step_number} v{step.version} for session {request.session_id}")
        return step

    @staticmethod
    def get_step(db: Session, session_id: str, step_number: int) -> DraftStep:
        draft = DraftService.get(db, session_id)
        step = next((s for s in draft.steps if s.step_number == step_number), None) if draft else None
        if step is None:
            raise LookupError(f"Step {step_number} has not been saved")
        return step

    @staticmethod
    def versions(db: Session, session_id: str) -> List[DraftVersion]:
        draft = DraftService.get(db, session_id)
        if draft is None:
            return []
        return [DraftService.version_of(step) for step in draft.steps]

    @staticmethod
    def delete(db: Session, session_id: str) -> bool:
        draft = DraftService.get(db, session_id)
        if draft is None:
            return False
        if draft.is_submitted:
            raise DraftClosedError("Submitted applications cannot be deleted")
        db.delete(draft)
        db.commit()
        logger.info(f"Draft deleted for session {session_id}")
        return True

    @staticmethod
    def version_of(step: DraftStep) -> DraftVersion:
        return DraftVersion(
            step_number=step.step_number,
            step_name=step.step_name,
            version=step.version,
            saved_at=as_utc(step.saved_at),
            is_complete=bool(step.is_complete),
        )

    @staticmethod
    def to_state(draft: Draft) -> DraftState:
        return DraftState(
            session_id=draft.session_id,
            application_id=draft.application_id,
            current_step=draft.current_step,
            highest_completed_step=draft.highest_completed_step,
            draft_version=draft.draft_version,
            step_versions=[DraftService.version_of(step) for step in draft.steps],
            data={step_key(step.step_number): step.data or {} for step in draft.steps},
            last_saved_at=as_utc(draft.last_saved_at),
            is_submitted=bool(draft.is_submitted),
        )

    @staticmethod
    def rebuild_application(draft: Draft, session: ApplicationSession) -> ApplicationDraft:
        """The application as assembled from its saved steps."""
        application = ApplicationDraft(
            id=draft.application_id,
            mode=ApplicationMode(session.mode),
            status=ApplicationStatus(draft.status),
        )
        for step in draft.steps:
            apply_step_payload(application, step.step_number, step.data)
        # The client's copy of this flag is not trusted
        application.otp_verified = bool(session.otp_verified)
        application.current_step = draft.current_step
        return application
