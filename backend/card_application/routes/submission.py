"""
Submission Routes — Final application submission and status lookup.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.database import get_db
from card_application.routes.errors import HANDLED, to_http
from card_application.schemas.schemas import ApplicationStatusResponse, SubmissionRequest, SubmissionResponse
from card_application.services.submission_service import SubmissionService
from card_application.utils.rate_limiter import rate_limit

settings = get_settings()

router = APIRouter(prefix="/api/application", tags=["Submission"])


@router.post("/submit", response_model=SubmissionResponse)
def submit_application(
    payload: SubmissionRequest,
    db: Session = Depends(get_db),
    _throttle: bool = Depends(
        rate_limit(settings.SUBMISSION_RATE_LIMIT, settings.SUBMISSION_RATE_WINDOW, "submission")
    ),
):
    """Validate the saved draft and issue a reference number. 422 names the first offending step."""
    try:
        return SubmissionService.submit(db, payload)
    except HANDLED as exc:
        raise to_http(exc) from exc


@router.get("/{application_id}/status", response_model=ApplicationStatusResponse)
def application_status(application_id: str, db: Session = Depends(get_db)):
    try:
        return SubmissionService.status(db, application_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
