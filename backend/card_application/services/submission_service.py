"""
Submission Service — Final submission of a credit card application.

The application is rebuilt from the saved draft steps and run through the
same step validation the wizard uses. The first offending step is reported
back so the wizard can return the applicant to it.
"""
import secrets

from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.core.errors import DraftClosedError, SubmissionRejectedError
from card_application.core.forms import ApplicationMode, ApplicationStatus
from card_application.core.steps import FIRST_STEP, LAST_STEP, step_at
from card_application.core.validation import validate_application
from card_application.models.draft import Draft
from card_application.models.session import as_utc, utcnow
from card_application.schemas.schemas import ApplicationStatusResponse, SubmissionRequest, SubmissionResponse
from card_application.services.draft_service import DraftService
from card_application.services.session_service import SessionService
from card_application.utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionService:
    @staticmethod
    def generate_reference_number(db: Session) -> str:
        """MTB-CC-<year>-<5 digits>, unique among drafts."""
        prefix = get_settings().REFERENCE_PREFIX
        year = utcnow().year
        while True:
            reference = f"{prefix}-{year}-{secrets.randbelow(100000):05d}"
            if not db.query(Draft).filter(Draft.reference_number == reference).first():
                return reference

    @staticmethod
    def submit(db: Session, request: SubmissionRequest) -> SubmissionResponse:
        session = SessionService.require_active(db, request.session_id)
        draft = DraftService.get(db, request.session_id)
        if draft is None or not draft.steps:
            raise SubmissionRejectedError("No saved application data for this session", step_number=FIRST_STEP)
        if draft.is_submitted:
            raise DraftClosedError("Application already submitted")

        if session.mode == ApplicationMode.SELF.value and not session.otp_verified:
            raise SubmissionRejectedError("Mobile number has not been verified", step_number=FIRST_STEP)
        if not (request.terms_accepted and request.declaration_accepted):
            raise SubmissionRejectedError(
                "Terms and declaration must be accepted",
                step_number=LAST_STEP,
                field_errors={
                    key: "Must be accepted"
                    for key, accepted in (
                        ("terms_accepted", request.terms_accepted),
                        ("declaration_accepted", request.declaration_accepted),
                    )
                    if not accepted
                },
            )

        application = DraftService.rebuild_application(draft, session)
        failures = validate_application(application)
        if failures:
            first = min(failures)
            logger.info(f"Submission for session {session.id} rejected at step {first}")
            raise SubmissionRejectedError(
                f"{step_at(first).title} has missing or invalid information",
                step_number=first,
                field_errors=failures[first].field_errors,
            )

        now = utcnow()
        draft.reference_number = SubmissionService.generate_reference_number(db)
        draft.status = ApplicationStatus.SUBMITTED.value
        draft.is_submitted = True
        draft.submitted_at = now
        db.commit()
        logger.info(f"Application {draft.application_id} submitted as {draft.reference_number}")

        return SubmissionResponse(
            reference_number=draft.reference_number,
            application_id=draft.application_id,
            submitted_at=now,
            status="SUBMITTED",
        )

    @staticmethod
    def status(db: Session, application_id: str) -> ApplicationStatusResponse:
        draft = db.query(Draft).filter(Draft.application_id == application_id).first()
        if draft is None:
            raise LookupError("Application not found")
        return ApplicationStatusResponse(
            application_id=draft.application_id,
            reference_number=draft.reference_number,
            status=ApplicationStatus(draft.status),
            submitted_at=as_utc(draft.submitted_at),
        )
