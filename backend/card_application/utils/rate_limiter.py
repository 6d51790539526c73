"""
Simple Memory-based Rate Limiter.
Windows are kept per scope and client (session id header, else client IP).
"""
import time
from typing import Dict, Tuple

from fastapi import HTTPException, Request

# In-memory storage: {(scope, client): (window_start, count)}
_rate_limit_store: Dict[Tuple[str, str], Tuple[float, int]] = {}


def reset_rate_limits() -> None:
    _rate_limit_store.clear()


def _client_key(request: Request) -> str:
    session_id = request.headers.get("session-id") or request.path_params.get("session_id")
    if session_id:
        return f"session:{session_id}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def rate_limit(requests: int, window: int, limit_type: str = "draft"):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60, limit_type="otp"))
    """
    def limiter(request: Request):
        key = (limit_type, _client_key(request))
        now = time.time()

        if key not in _rate_limit_store:
            _rate_limit_store[key] = (now, 1)
            return True

        window_start, count = _rate_limit_store[key]

        # Reset window if expired
        if now - window_start > window:
            _rate_limit_store[key] = (now, 1)
            return True

        if count >= requests:
            retry_after = max(1, int(window - (now - window_start)))
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
                    "limitType": limit_type,
                    "retryAfterSeconds": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        _rate_limit_store[key] = (window_start, count + 1)
        return True

    return limiter
