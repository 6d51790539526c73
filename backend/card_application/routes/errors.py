"""
HTTP error mapping for service exceptions.
"""
from fastapi import HTTPException

from card_application.core.errors import (
    DraftClosedError,
    RateLimitedError,
    SessionExpiredError,
    SubmissionRejectedError,
)
from card_application.schemas.schemas import SubmissionRejection

HANDLED = (LookupError, ValueError, SessionExpiredError, DraftClosedError, RateLimitedError, SubmissionRejectedError)


def to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "Not found")
    if isinstance(exc, SessionExpiredError):
        return HTTPException(status_code=401, detail=exc.message)
    if isinstance(exc, DraftClosedError):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, RateLimitedError):
        return HTTPException(
            status_code=429,
            detail={
                "message": exc.message,
                "limitType": exc.limit_type,
                "retryAfterSeconds": exc.retry_after_seconds,
            },
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    if isinstance(exc, SubmissionRejectedError):
        rejection = SubmissionRejection(
            message=exc.message, step_number=exc.step_number, field_errors=exc.field_errors,
        )
        return HTTPException(status_code=422, detail=rejection.model_dump(by_alias=True))
    return HTTPException(status_code=400, detail=str(exc))
