"""
Pydantic Schemas — Request & Response models for the draft, session, OTP and
submission APIs. Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from card_application.core.forms import ApplicationMode, ApplicationStatus, DraftVersion
from card_application.core.steps import FIRST_STEP, LAST_STEP


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────── Session ────────────────

class SessionCreateRequest(WireModel):
    mode: ApplicationMode = Field(ApplicationMode.SELF, description="SELF or ASSISTED")
    user_id: Optional[str] = None


class SessionState(WireModel):
    session_id: str
    application_id: Optional[str] = None
    user_id: Optional[str] = None
    mode: ApplicationMode
    created_at: datetime
    expires_at: datetime
    ttl_seconds: int
    is_active: bool
    otp_verified: bool = False


class SessionExtendResponse(WireModel):
    new_expires_at: datetime
    new_ttl_seconds: int


# ──────────────── Drafts ────────────────

class DraftInitializeRequest(WireModel):
    session_id: str


class DraftState(WireModel):
    """Server-held draft. `data` maps ``step_<n>`` to that step's payload."""

    session_id: str
    application_id: str
    current_step: int = FIRST_STEP
    highest_completed_step: int = -1
    draft_version: int = 0
    step_versions: List[DraftVersion] = []
    data: Dict[str, Any] = {}
    last_saved_at: datetime
    is_submitted: bool = False


class DraftSaveRequest(WireModel):
    session_id: str
    step_number: int = Field(..., ge=FIRST_STEP, le=LAST_STEP)
    step_name: str
    data: Dict[str, Any]
    is_step_complete: bool = False


class DraftSaveResponse(WireModel):
    success: bool
    draft_version: int
    saved_at: datetime


class DraftStepResponse(WireModel):
    step_number: int
    step_name: str
    data: Dict[str, Any]
    version: int
    is_complete: bool
    saved_at: datetime


# ──────────────── OTP ────────────────

class OtpAttemptState(WireModel):
    mobile_number: str
    remaining_attempts: int
    max_attempts: int
    is_locked: bool
    lock_expires_at: Optional[datetime] = None
    cooldown_seconds: Optional[int] = None
    last_attempt_at: Optional[datetime] = None


class RateLimitInfo(WireModel):
    is_limited: bool
    retry_after_seconds: Optional[int] = None
    limit_type: Literal["otp", "draft", "submission"]
    message: Optional[str] = None


class OtpRequest(WireModel):
    session_id: str
    mobile_number: str


class OtpVerifyRequest(WireModel):
    session_id: str
    mobile_number: str
    otp: str = Field(..., min_length=4, max_length=8)


class OtpRequestResponse(WireModel):
    success: bool
    masked_mobile: str
    expires_in_seconds: int
    attempt_state: OtpAttemptState


class OtpVerifyResponse(WireModel):
    verified: bool
    message: str
    attempt_state: OtpAttemptState


# ──────────────── Submission ────────────────

class SubmissionRequest(WireModel):
    session_id: str
    terms_accepted: bool = False
    declaration_accepted: bool = False


class SubmissionResponse(WireModel):
    reference_number: str
    application_id: str
    submitted_at: datetime
    status: Literal["SUBMITTED", "PENDING_VERIFICATION"] = "SUBMITTED"


class SubmissionRejection(WireModel):
    message: str
    step_number: Optional[int] = None
    field_errors: Dict[str, str] = {}


class ApplicationStatusResponse(WireModel):
    application_id: str
    reference_number: Optional[str] = None
    status: ApplicationStatus
    submitted_at: Optional[datetime] = None
