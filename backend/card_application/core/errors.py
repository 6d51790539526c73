"""
Wizard Errors — the error taxonomy of the application wizard core.

Validation and conflict errors are resolved inside the Wizard Controller.
Transient and session errors are turned into controller state for the
presentation layer; none of them may escape in a way that loses the draft.
"""
from typing import Dict, Optional


class WizardError(Exception):
    """Base class for all wizard core errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StepValidationError(WizardError):
    """Field-level validation failure. Blocks a transition, never crashes it."""

    def __init__(self, message: str, step_number: int, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.step_number = step_number
        self.field_errors = field_errors or {}


class TransientSaveError(WizardError):
    """Network or service failure on a remote save. Retried with backoff."""

    def __init__(self, message: str, status_code: Optional[int] = None, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error

    def __str__(self):
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class RateLimitedError(TransientSaveError):
    """The remote side asked us to slow down (HTTP 429)."""

    def __init__(self, message: str, retry_after_seconds: int = 0, limit_type: str = "draft"):
        super().__init__(message, status_code=429)
        self.retry_after_seconds = retry_after_seconds
        self.limit_type = limit_type


class SessionExpiredError(WizardError):
    """The remote session is no longer honoured; the local draft is kept."""

    def __init__(self, message: str = "Session has expired. Please start again.", session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class ConflictError(WizardError):
    """Remote step version disagrees with the locally expected version."""

    def __init__(self, step_number: int, local_version: int, remote_version: int):
        super().__init__(
            f"Step {step_number}: expected version {local_version}, remote reported {remote_version}"
        )
        self.step_number = step_number
        self.local_version = local_version
        self.remote_version = remote_version


class SubmissionRejectedError(WizardError):
    """Server-side business rule rejection at final submit. Surfaced verbatim."""

    def __init__(self, message: str, step_number: Optional[int] = None, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.step_number = step_number
        self.field_errors = field_errors or {}


class InvalidStatusTransition(WizardError, ValueError):
    """An application status change that would move the lifecycle backwards."""


class DraftClosedError(WizardError):
    """The draft was already submitted; further saves are refused."""
