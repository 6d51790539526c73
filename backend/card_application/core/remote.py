"""
Remote Draft Service — the server-authoritative, versioned draft store.

`RemoteDraftService` is the contract the wizard core consumes;
`HttpRemoteDraftService` talks to the reference backend over HTTP.

Contract:
- All methods are async
- Transport failures, timeouts and 5xx raise TransientSaveError
- 429 raises RateLimitedError; 401/404/410 raise SessionExpiredError
- A 422 on submit raises SubmissionRejectedError with the server's message
- OTP calls return the backend's attempt state; a locked challenge is a 429
"""
import abc
import asyncio
from typing import Any, Dict, Optional

import httpx

from card_application.config import get_settings
from card_application.core.errors import (
    RateLimitedError,
    SessionExpiredError,
    SubmissionRejectedError,
    TransientSaveError,
    WizardError,
)
from card_application.schemas.schemas import (
    DraftSaveRequest,
    DraftSaveResponse,
    DraftState,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    SessionState,
    SubmissionRequest,
    SubmissionResponse,
)
from card_application.utils.logger import get_logger

logger = get_logger(__name__)


class RemoteDraftService(abc.ABC):
    """Boundary to the draft backend."""

    @abc.abstractmethod
    async def save_step(
        self,
        session_id: str,
        step_number: int,
        step_name: str,
        data: Dict[str, Any],
        is_step_complete: bool = False,
    ) -> DraftSaveResponse:
        ...

    @abc.abstractmethod
    async def fetch_draft(self, session_id: str) -> Optional[DraftState]:
        ...

    @abc.abstractmethod
    async def submit(
        self,
        session_id: str,
        terms_accepted: bool = True,
        declaration_accepted: bool = True,
    ) -> SubmissionResponse:
        ...

    @abc.abstractmethod
    async def get_session(self, session_id: str) -> SessionState:
        ...

    @abc.abstractmethod
    async def request_otp(self, session_id: str, mobile_number: str, resend: bool = False) -> OtpRequestResponse:
        ...

    @abc.abstractmethod
    async def verify_otp(self, session_id: str, mobile_number: str, code: str) -> OtpVerifyResponse:
        ...

    async def close(self) -> None:
        return None


def _detail(response: httpx.Response) -> Any:
    try:
        return response.json().get("detail", response.text)
    except (ValueError, AttributeError):
        return response.text


def _message(detail: Any, default: str) -> str:
    if isinstance(detail, dict):
        return str(detail.get("message", default))
    return str(detail) if detail else default


class HttpRemoteDraftService(RemoteDraftService):
    """HTTP client for the draft backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.REMOTE_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self._transport,
                    follow_redirects=True,
                )
            return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "HttpRemoteDraftService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, session_id: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientSaveError(f"{method} {path} timed out", original_error=exc) from exc
        except httpx.RequestError as exc:
            raise TransientSaveError(f"Request failed: {exc}", original_error=exc) from exc

        status = response.status_code
        if status < 400 or status == 422:
            return response

        detail = _detail(response)
        if status == 429:
            retry_after = 0
            limit_type = "draft"
            if isinstance(detail, dict):
                retry_after = int(detail.get("retryAfterSeconds") or 0)
                limit_type = detail.get("limitType", limit_type)
            retry_after = retry_after or int(response.headers.get("Retry-After", 0) or 0)
            raise RateLimitedError(_message(detail, "Too many requests"), retry_after, limit_type)
        if status in (401, 404, 410):
            raise SessionExpiredError(_message(detail, "Session has expired. Please start again."), session_id)
        if status >= 500:
            raise TransientSaveError(_message(detail, "Remote draft service unavailable"), status_code=status)
        raise WizardError(f"{method} {path} failed with {status}: {_message(detail, response.reason_phrase)}")

    # -----------------------------------------------------------------
    # Drafts
    # -----------------------------------------------------------------

    async def save_step(self, session_id, step_number, step_name, data, is_step_complete=False):
        """POST /api/drafts/save"""
        request = DraftSaveRequest(
            session_id=session_id,
            step_number=step_number,
            step_name=step_name,
            data=data,
            is_step_complete=is_step_complete,
        )
        response = await self._request(
            "POST", "/api/drafts/save", session_id, json=request.model_dump(mode="json", by_alias=True),
        )
        if response.status_code == 422:
            raise WizardError(f"Draft save rejected: {_message(_detail(response), 'invalid request')}")
        return DraftSaveResponse.model_validate(response.json())

    async def fetch_draft(self, session_id):
        """GET /api/drafts/{sessionId}"""
        response = await self._request("GET", f"/api/drafts/{session_id}", session_id)
        body = response.json()
        if body is None:
            return None
        return DraftState.model_validate(body)

    # -----------------------------------------------------------------
    # OTP
    # -----------------------------------------------------------------

    async def request_otp(self, session_id, mobile_number, resend=False):
        """POST /api/auth/otp/request (or /resend)"""
        request = OtpRequest(session_id=session_id, mobile_number=mobile_number)
        path = "/api/auth/otp/resend" if resend else "/api/auth/otp/request"
        response = await self._request("POST", path, session_id, json=request.model_dump(by_alias=True))
        if response.status_code == 422:
            raise WizardError(f"OTP request rejected: {_message(_detail(response), 'invalid request')}")
        return OtpRequestResponse.model_validate(response.json())

    async def verify_otp(self, session_id, mobile_number, code):
        """POST /api/auth/otp/verify"""
        request = OtpVerifyRequest(session_id=session_id, mobile_number=mobile_number, otp=code)
        response = await self._request(
            "POST", "/api/auth/otp/verify", session_id, json=request.model_dump(by_alias=True),
        )
        if response.status_code == 422:
            raise WizardError(f"OTP verification rejected: {_message(_detail(response), 'invalid code')}")
        return OtpVerifyResponse.model_validate(response.json())

    # -----------------------------------------------------------------
    # Session & Submission
    # -----------------------------------------------------------------

    async def get_session(self, session_id):
        """GET /api/session/{sessionId}"""
        response = await self._request("GET", f"/api/session/{session_id}", session_id)
        return SessionState.model_validate(response.json())

    async def submit(self, session_id, terms_accepted=True, declaration_accepted=True):
        """POST /api/application/submit"""
        request = SubmissionRequest(
            session_id=session_id,
            terms_accepted=terms_accepted,
            declaration_accepted=declaration_accepted,
        )
        response = await self._request(
            "POST", "/api/application/submit", session_id, json=request.model_dump(mode="json", by_alias=True),
        )
        if response.status_code == 422:
            detail = _detail(response)
            if isinstance(detail, dict):
                raise SubmissionRejectedError(
                    _message(detail, "Application was rejected"),
                    step_number=detail.get("stepNumber"),
                    field_errors=detail.get("fieldErrors") or {},
                )
            raise SubmissionRejectedError(_message(detail, "Application was rejected"))
        logger.info(f"Application submitted for session {session_id}")
        return SubmissionResponse.model_validate(response.json())
