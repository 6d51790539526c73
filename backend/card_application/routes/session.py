"""
Session Routes — Lifecycle management for application sessions.
Handles: creation, status check, extension, ending.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from card_application.database import get_db
from card_application.routes.errors import HANDLED, to_http
from card_application.schemas.schemas import SessionCreateRequest, SessionExtendResponse, SessionState
from card_application.services.session_service import SessionService

router = APIRouter(prefix="/api/session", tags=["Session"])


@router.post("/create", response_model=SessionState)
def create_session(
    payload: SessionCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Create a new application session."""
    session = SessionService.create(
        db,
        payload.mode,
        user_id=payload.user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent", ""),
    )
    return SessionService.to_state(session)


@router.get("/{session_id}", response_model=SessionState)
def get_session(session_id: str, db: Session = Depends(get_db)):
    """Live session state. Expired sessions answer 401."""
    try:
        session = SessionService.require_active(db, session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
    return SessionService.to_state(session)


@router.post("/{session_id}/extend", response_model=SessionExtendResponse)
def extend_session(session_id: str, db: Session = Depends(get_db)):
    """Reset the session TTL."""
    try:
        session = SessionService.extend(db, session_id)
    except HANDLED as exc:
        raise to_http(exc) from exc
    state = SessionService.to_state(session)
    return SessionExtendResponse(new_expires_at=state.expires_at, new_ttl_seconds=state.ttl_seconds)


@router.delete("/{session_id}")
def end_session(session_id: str, db: Session = Depends(get_db)):
    try:
        SessionService.end(db, session_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "message": "Session ended"}
