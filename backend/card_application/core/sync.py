"""
Remote draft sync — per-step remote saves with version bookkeeping.

At most one save per step is in flight. A newer save for a step that is
busy replaces any save still waiting for that step, so only the latest
payload is sent next. Acknowledged versions are recorded on the draft; a
response carrying a lower version than the one already held is ignored.
"""
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from card_application.config import get_settings
from card_application.core.draft import ApplicationDraft, step_payload
from card_application.core.errors import (
    ConflictError,
    RateLimitedError,
    SessionExpiredError,
    TransientSaveError,
    WizardError,
)
from card_application.core.forms import DraftVersion
from card_application.core.reconcile import apply_state, draft_to_state, reconcile
from card_application.core.remote import RemoteDraftService
from card_application.core.steps import StepDefinition, resolve_step
from card_application.schemas.schemas import DraftSaveResponse
from card_application.utils.logger import get_logger

logger = get_logger(__name__)


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class RemoteDraftSync:
    def __init__(
        self,
        draft: ApplicationDraft,
        remote: RemoteDraftService,
        session_id: str,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.draft = draft
        self.remote = remote
        self.session_id = session_id
        self.max_retries = settings.REMOTE_SAVE_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.REMOTE_SAVE_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._sleep = sleep

        self.save_status = SaveStatus.IDLE
        self.unsaved_steps: Set[int] = set()
        self.last_error: Optional[WizardError] = None
        self.session_expired = False

        self._pending: Dict[int, Tuple[dict, bool]] = {}
        self._workers: Dict[int, asyncio.Task] = {}

    # ─── Public API ───

    def schedule(self, step, is_complete: bool = False) -> Optional[asyncio.Task]:
        """Queue the step's current payload. Never awaits network I/O."""
        definition = self._definition(step)
        self.unsaved_steps.add(definition.number)
        if self.session_expired:
            return None
        self._pending[definition.number] = (step_payload(self.draft, definition), is_complete)
        return self._ensure_worker(definition.number)

    async def save_step(self, step, is_complete: bool = False) -> bool:
        """Save a step and wait for it. True once the step has no unsaved changes."""
        definition = self._definition(step)
        worker = self.schedule(definition, is_complete)
        if worker is not None:
            await worker
        return definition.number not in self.unsaved_steps

    async def flush(self) -> bool:
        """Send every queued or previously failed save and wait. True when nothing is left unsaved."""
        if not self.session_expired:
            for number in sorted(self.unsaved_steps):
                if number not in self._pending and not self._busy(number):
                    self._pending[number] = (step_payload(self.draft, number), self._was_complete(number))
        for number in list(self._pending):
            self._ensure_worker(number)
        workers = [w for w in self._workers.values() if not w.done()]
        if workers:
            await asyncio.gather(*workers)
        return not self.unsaved_steps

    def mark_session_expired(self, error: Optional[SessionExpiredError] = None) -> None:
        """Stop issuing remote saves. Local data is kept and stays marked unsaved."""
        if not self.session_expired:
            logger.warning(f"Session {self.session_id} expired; remote saves stopped")
        self.session_expired = True
        self.last_error = error or SessionExpiredError(session_id=self.session_id)
        self.unsaved_steps.update(self._pending)
        self._pending.clear()
        self.save_status = SaveStatus.ERROR

    def record_response(self, step, response: DraftSaveResponse, is_complete: bool = False, force: bool = False) -> bool:
        """Record an acknowledged version unless it is older than the one held."""
        definition = self._definition(step)
        entry = DraftVersion(
            step_number=definition.number,
            step_name=definition.name,
            version=response.draft_version,
            saved_at=response.saved_at,
            is_complete=is_complete,
        )
        if force:
            self.draft.step_versions = [v for v in self.draft.step_versions if v.step_number != definition.number]
        recorded = self.draft.record_step_version(entry)
        if not recorded:
            logger.debug(
                f"Ignored stale response for step {definition.number}: "
                f"v{response.draft_version} < v{self.draft.step_version(definition.number)}"
            )
        return recorded

    # ─── Workers ───

    def _definition(self, step) -> StepDefinition:
        definition = resolve_step(step)
        if definition is None:
            raise KeyError(f"Unknown step: {step}")
        return definition

    def _busy(self, number: int) -> bool:
        worker = self._workers.get(number)
        return worker is not None and not worker.done()

    def _was_complete(self, number: int) -> bool:
        return any(v.is_complete for v in self.draft.step_versions if v.step_number == number)

    def _ensure_worker(self, number: int) -> Optional[asyncio.Task]:
        if self._busy(number):
            return self._workers[number]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sent by the next flush()
            return None
        worker = loop.create_task(self._drain(number))
        self._workers[number] = worker
        return worker

    async def _drain(self, number: int) -> None:
        self.save_status = SaveStatus.SAVING
        while number in self._pending and not self.session_expired:
            payload, is_complete = self._pending.pop(number)
            saved = await self._send(number, payload, is_complete)
            if saved and number not in self._pending:
                self.unsaved_steps.discard(number)
        self._update_status()

    def _update_status(self) -> None:
        if any(not w.done() for w in self._workers.values() if w is not asyncio.current_task()):
            return
        if self.session_expired or self.unsaved_steps:
            self.save_status = SaveStatus.ERROR
        else:
            self.save_status = SaveStatus.SAVED
            self.last_error = None

    async def _send(self, number: int, payload: dict, is_complete: bool) -> bool:
        definition = self._definition(number)
        attempt = 0
        resent = False
        while True:
            expected = self.draft.step_version(number) + 1
            try:
                response = await self.remote.save_step(
                    self.session_id, number, definition.name, payload, is_complete,
                )
            except SessionExpiredError as exc:
                self.mark_session_expired(exc)
                return False
            except TransientSaveError as exc:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(f"Giving up on step {number} after {self.max_retries} retries: {exc}")
                    self.last_error = exc
                    return False
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                if isinstance(exc, RateLimitedError):
                    delay = max(delay, exc.retry_after_seconds)
                logger.warning(f"Save of step {number} failed ({exc}); retry {attempt} in {delay:.1f}s")
                await self._sleep(delay)
                continue
            except WizardError as exc:
                logger.warning(f"Save of step {number} refused: {exc}")
                self.last_error = exc
                return False

            try:
                if response.draft_version != expected:
                    raise ConflictError(number, expected, response.draft_version)
            except ConflictError as conflict:
                if conflict.remote_version < conflict.local_version and not resent:
                    # Remote fell behind; our write is authoritative
                    logger.info(f"{conflict}; resending")
                    resent = True
                    continue
                if conflict.remote_version < conflict.local_version:
                    logger.info(f"{conflict}; adopting remote version")
                    self.record_response(number, response, is_complete, force=True)
                    return True
                self.record_response(number, response, is_complete)
                await self._refetch(conflict)
                return True

            self.record_response(number, response, is_complete)
            return True

    async def _refetch(self, conflict: ConflictError) -> None:
        """Remote is ahead: pull the server copy and reconcile into the draft."""
        logger.info(f"{conflict}; reconciling with remote draft")
        try:
            remote_state = await self.remote.fetch_draft(self.session_id)
        except SessionExpiredError as exc:
            self.mark_session_expired(exc)
            return
        except TransientSaveError as exc:
            logger.warning(f"Could not refetch draft after conflict: {exc}")
            return
        if remote_state is None:
            return
        local_state = draft_to_state(self.draft, self.session_id, remote_state.application_id)
        apply_state(self.draft, reconcile(local_state, remote_state))
