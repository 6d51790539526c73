"""
Draft Routes — Server-side draft storage with per-step versions.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from card_application.config import get_settings
from card_application.core.forms import DraftVersion
from card_application.database import get_db
from card_application.routes.errors import HANDLED, to_http
from card_application.schemas.schemas import (
    DraftInitializeRequest, DraftSaveRequest, DraftSaveResponse, DraftState, DraftStepResponse,
)
from card_application.services.draft_service import DraftService
from card_application.models.session import as_utc
from card_application.utils.rate_limiter import rate_limit

settings = get_settings()

router = APIRouter(prefix="/api/drafts", tags=["Drafts"])


@router.post("/initialize", response_model=DraftState)
def initialize_draft(payload: DraftInitializeRequest, db: Session = Depends(get_db)):
    try:
        draft = DraftService.initialize(db, payload.session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return DraftService.to_state(draft)


@router.post("/save", response_model=DraftSaveResponse)
def save_draft_step(
    payload: DraftSaveRequest,
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(settings.DRAFT_RATE_LIMIT, settings.DRAFT_RATE_WINDOW, "draft")),
):
    """Save one step. The returned draftVersion is that step's new version."""
    try:
        step = DraftService.save_step(db, payload)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return DraftSaveResponse(success=True, draft_version=step.version, saved_at=as_utc(step.saved_at))


@router.get("/{session_id}", response_model=Optional[DraftState])
def get_draft(session_id: str, db: Session = Depends(get_db)):
    """Draft state, or null when nothing has been saved for the session."""
    try:
        draft = DraftService.get(db, session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return DraftService.to_state(draft) if draft else None


@router.get("/{session_id}/versions", response_model=List[DraftVersion])
def get_draft_versions(session_id: str, db: Session = Depends(get_db)):
    try:
        return DraftService.versions(db, session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc


@router.get("/{session_id}/steps/{step_number}", response_model=DraftStepResponse)
def get_draft_step(session_id: str, step_number: int, db: Session = Depends(get_db)):
    try:
        step = DraftService.get_step(db, session_id, step_number)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return DraftStepResponse(
        step_number=step.step_number,
        step_name=step.step_name,
        data=step.data or {},
        version=step.version,
        is_complete=bool(step.is_complete),
        saved_at=as_utc(step.saved_at),
    )


@router.delete("/{session_id}")
def delete_draft(session_id: str, db: Session = Depends(get_db)):
    try:
        deleted = DraftService.delete(db, session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return {"success": deleted}
