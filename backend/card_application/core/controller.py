"""
Wizard Controller — the state machine driving the application wizard.

Owns one ApplicationDraft for one session. Gates forward navigation on the
Step Validator, mirrors every mutation to the Local Autosave Store, pushes
step saves to the Remote Draft Service, and turns transient and session
failures into state instead of exceptions.
"""
import math
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from card_application.config import get_settings
from card_application.core.autosave import AutosaveWriter, LocalAutosaveStore
from card_application.core.draft import ApplicationDraft, new_draft, step_record
from card_application.core.errors import (
    RateLimitedError,
    SessionExpiredError,
    StepValidationError,
    SubmissionRejectedError,
    TransientSaveError,
    WizardError,
)
from card_application.core.forms import ApplicationMode, ApplicationStatus
from card_application.core.otp_gate import GateDecision, OtpGate, session_is_live, session_needs_warning
from card_application.core.reconcile import apply_state, draft_to_state, reconcile
from card_application.core.remote import RemoteDraftService
from card_application.core.steps import (
    FIRST_STEP,
    LAST_STEP,
    TOTAL_STEPS,
    StepDefinition,
    StepId,
    list_steps,
    required_steps,
    resolve_step,
    step_at,
)
from card_application.core.sync import RemoteDraftSync, SaveStatus
from card_application.core.validation import StepValidator, ValidationResult
from card_application.schemas.schemas import OtpAttemptState, RateLimitInfo, SessionState, SubmissionResponse
from card_application.utils.logger import get_logger
from card_application.utils.validators import validate_bd_mobile

logger = get_logger(__name__)


class WizardPhase(str, Enum):
    EDITING = "EDITING"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"
    ABANDONED = "ABANDONED"


@dataclass(frozen=True)
class StepStatus:
    step: StepDefinition
    is_complete: bool
    is_current: bool
    is_reachable: bool


class WizardController:
    def __init__(
        self,
        draft: ApplicationDraft,
        store: Optional[LocalAutosaveStore] = None,
        remote: Optional[RemoteDraftService] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], date] = date.today,
        sync: Optional[RemoteDraftSync] = None,
    ):
        self.draft = draft
        self.store = store
        self.remote = remote
        self.session_id = session_id
        self._clock = clock

        self.phase = WizardPhase.EDITING
        self.field_errors: Dict[str, str] = {}
        self.error: Optional[WizardError] = None
        self.submission: Optional[SubmissionResponse] = None
        self.otp_attempt_state: Optional[OtpAttemptState] = None
        self._otp_mobile: Optional[str] = None
        self._otp_limit: Optional[RateLimitInfo] = None
        self._otp_limited_until = 0.0

        self._writer: Optional[AutosaveWriter] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        if store is not None:
            self._writer = AutosaveWriter(store)
            self._unsubscribe = self._writer.attach(draft)

        if sync is None and remote is not None and session_id is not None:
            sync = RemoteDraftSync(draft, remote, session_id)
        self.sync = sync

    # ─── Lifecycle ───

    @classmethod
    def start(
        cls,
        mode: ApplicationMode = ApplicationMode.SELF,
        store: Optional[LocalAutosaveStore] = None,
        **kwargs,
    ) -> "WizardController":
        """Fresh wizard for `mode`; any stored draft is replaced on first save."""
        return cls(new_draft(mode), store=store, **kwargs)

    @classmethod
    async def resume(
        cls,
        mode: ApplicationMode,
        store: LocalAutosaveStore,
        remote: Optional[RemoteDraftService] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], date] = date.today,
    ) -> "WizardController":
        """
        Rehydrate the wizard: local draft first, then the server copy when the
        session is still live, reconciled per step. The wizard is positioned
        at the saved step, clamped to the highest reachable step.
        """
        draft = store.load(mode) or new_draft(mode)
        session: Optional[SessionState] = None
        session_lost = False

        if remote is not None and session_id is not None:
            try:
                session = await remote.get_session(session_id)
            except SessionExpiredError:
                session_lost = True
            except TransientSaveError as exc:
                logger.warning(f"Session check failed during resume: {exc}")

            if session is not None and session_is_live(session):
                try:
                    remote_state = await remote.fetch_draft(session_id)
                except TransientSaveError as exc:
                    logger.warning(f"Remote draft unavailable during resume: {exc}")
                    remote_state = None
                if remote_state is not None:
                    local_state = draft_to_state(draft, session_id, remote_state.application_id)
                    apply_state(draft, reconcile(local_state, remote_state))
                    logger.info(f"Reconciled draft for session {session_id} at step {draft.current_step}")
            elif session is not None:
                session_lost = True

        controller = cls(draft, store=store, remote=remote, session_id=session_id, clock=clock)
        if session is not None and session.otp_verified and not draft.otp_verified:
            draft.set_otp_verified(True)
        if session_lost and controller.sync is not None:
            controller.sync.mark_session_expired(SessionExpiredError(session_id=session_id))
        controller.draft.set_current_step(
            max(controller.start_step, min(draft.current_step, controller.highest_reachable_step))
        )
        return controller

    async def __aenter__(self) -> "WizardController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self.sync is not None and self.phase == WizardPhase.EDITING:
                await self.sync.flush()
        finally:
            self.close()

    def close(self) -> None:
        """Flush pending autosaves and release the local store."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def _retire(self) -> None:
        self.close()
        if self.store is not None:
            self.store.clear()

    # ─── State ───

    @property
    def current_step(self) -> int:
        return self.draft.current_step

    @property
    def current_definition(self) -> StepDefinition:
        return step_at(self.draft.current_step)

    @property
    def start_step(self) -> int:
        return FIRST_STEP + 1 if self.draft.mode == ApplicationMode.ASSISTED else FIRST_STEP

    @property
    def session_expired(self) -> bool:
        return self.sync is not None and self.sync.session_expired

    @property
    def save_status(self) -> SaveStatus:
        return self.sync.save_status if self.sync is not None else SaveStatus.IDLE

    @property
    def unsaved_steps(self) -> List[int]:
        return sorted(self.sync.unsaved_steps) if self.sync is not None else []

    def validate(self, step=None) -> ValidationResult:
        definition = resolve_step(self.current_step if step is None else step)
        return StepValidator.validate(definition, step_record(self.draft, definition), today=self._clock())

    def is_step_complete(self, step) -> bool:
        definition = resolve_step(step)
        if definition.id == StepId.PRE_APPLICATION:
            if self.draft.mode == ApplicationMode.ASSISTED:
                return True
            return self.draft.otp_verified and self.validate(definition).ok
        return self.validate(definition).ok

    @property
    def highest_reachable_step(self) -> int:
        """The first incomplete required step; optional steps never block."""
        for definition in required_steps():
            if not self.is_step_complete(definition):
                return definition.number
        return LAST_STEP

    def step_statuses(self) -> List[StepStatus]:
        reachable = self.highest_reachable_step
        return [
            StepStatus(
                step=definition,
                is_complete=self.is_step_complete(definition),
                is_current=definition.number == self.current_step,
                is_reachable=self.start_step <= definition.number <= reachable,
            )
            for definition in list_steps()
        ]

    def completion_percentage(self) -> int:
        done = sum(1 for status in self.step_statuses() if status.is_complete)
        return round(done * 100 / TOTAL_STEPS)

    # ─── Step component contract ───

    def initial_data(self, step=None) -> Any:
        """Detached copy of the step's current data for a step component."""
        value = step_record(self.draft, self.current_step if step is None else step)
        if isinstance(value, list):
            return [row.model_copy(deep=True) for row in value]
        return value.model_copy(deep=True) if value is not None else None

    def save_step_data(self, step, data: Any) -> ValidationResult:
        """onSave callback: apply the step's data, revalidate, queue a remote save."""
        definition = resolve_step(step)
        if definition is None:
            raise KeyError(f"Unknown step: {step}")
        if self.phase != WizardPhase.EDITING:
            raise WizardError(f"Wizard is {self.phase.value.lower()}; edits are closed")

        if definition.id == StepId.BANK_ACCOUNTS:
            self._sync_rows(data, self.draft.bank_accounts, self.draft.add_bank_account,
                            self.draft.update_bank_account, self.draft.remove_bank_account)
        elif definition.id == StepId.CREDIT_FACILITIES:
            self._sync_rows(data, self.draft.credit_facilities, self.draft.add_credit_facility,
                            self.draft.update_credit_facility, self.draft.remove_credit_facility)
        elif definition.id == StepId.SUPPLEMENTARY:
            if data is None:
                self.draft.set_has_supplementary_card(False)
            else:
                self.draft.update_supplementary_card(data)
        else:
            self._updaters[definition.id](self.draft, data)

        result = self.validate(definition)
        if definition.number == self.current_step:
            self.field_errors = dict(result.field_errors)
        if self.sync is not None:
            self.sync.schedule(definition, is_complete=result.ok)

        # An edit that breaks an earlier required step pulls the wizard back to it
        reachable = self.highest_reachable_step
        if self.current_step > reachable:
            logger.info(f"Step {definition.number} edit moved the wizard back to step {reachable}")
            self.draft.set_current_step(max(self.start_step, reachable))
            self.field_errors = dict(self.validate(self.current_step).field_errors)
        return result

    _updaters = {
        StepId.PRE_APPLICATION: ApplicationDraft.update_pre_application,
        StepId.CARD_SELECTION: ApplicationDraft.update_card_selection,
        StepId.PERSONAL_INFO: ApplicationDraft.update_personal_info,
        StepId.PROFESSIONAL_INFO: ApplicationDraft.update_professional_info,
        StepId.MONTHLY_INCOME: ApplicationDraft.update_monthly_income,
        StepId.NOMINEE: ApplicationDraft.update_nominee,
        StepId.REFERENCES: ApplicationDraft.update_references,
        StepId.DOCUMENTS: ApplicationDraft.update_image_signature,
        StepId.AUTO_DEBIT: ApplicationDraft.update_auto_debit,
        StepId.MID: ApplicationDraft.update_mid,
    }

    @staticmethod
    def _sync_rows(rows, current, add, update, remove) -> None:
        rows = [row.model_dump() if hasattr(row, "model_dump") else dict(row) for row in rows or []]
        incoming_ids = {row.get("id") for row in rows if row.get("id")}
        for existing in list(current):
            if existing.id not in incoming_ids:
                remove(existing.id)
        known = {existing.id for existing in current}
        for row in rows:
            if row.get("id") in known:
                update(row["id"], row)
            else:
                add(row)

    def mark_otp_verified(self) -> None:
        """External signal: the OTP for the pre-application step was verified."""
        self.draft.set_otp_verified(True)

    # ─── OTP ───

    def _otp_rate_limit(self) -> Optional[RateLimitInfo]:
        if self._otp_limit is None:
            return None
        left = math.ceil(self._otp_limited_until - time.monotonic())
        if left <= 0:
            self._otp_limit = None
            return None
        return self._otp_limit.model_copy(update={"retry_after_seconds": left})

    def _hold_otp(self, exc: RateLimitedError) -> None:
        self._otp_limit = RateLimitInfo(
            is_limited=True,
            retry_after_seconds=exc.retry_after_seconds,
            limit_type="otp",
            message=exc.message,
        )
        self._otp_limited_until = time.monotonic() + exc.retry_after_seconds
        self.error = exc
        self.field_errors = {"otp": exc.message}

    def _otp_failed(self, exc: WizardError) -> bool:
        if isinstance(exc, RateLimitedError):
            self._hold_otp(exc)
        else:
            self.error = exc
            self.field_errors = {"otp": exc.message}
            if isinstance(exc, SessionExpiredError) and self.sync is not None:
                self.sync.mark_session_expired(exc)
        logger.info(f"OTP call failed: {exc}")
        return False

    def otp_decision(self) -> GateDecision:
        """Whether a verification attempt may be sent now, from the last known attempt state."""
        return OtpGate.check(self.otp_attempt_state, self._otp_rate_limit())

    async def request_otp(self, resend: bool = False) -> bool:
        """Send a code to the pre-application mobile number; the draft waits on OTP."""
        if self.phase != WizardPhase.EDITING:
            return False
        if self.draft.otp_verified:
            return True
        mobile_number = self.draft.pre_application.mobile_number
        if not validate_bd_mobile(mobile_number):
            self.field_errors = {"mobile_number": "Enter a valid Bangladesh mobile number (01XXXXXXXXX)"}
            return False
        if self.remote is None or self.session_id is None:
            self.error = WizardError("No remote service to send the code")
            return False

        limit = self._otp_rate_limit()
        if limit is not None:
            self.field_errors = {"otp": limit.message or "Too many requests. Please wait before trying again."}
            return False

        try:
            response = await self.remote.request_otp(self.session_id, mobile_number, resend=resend)
        except WizardError as exc:
            return self._otp_failed(exc)

        self._otp_mobile = mobile_number
        self.otp_attempt_state = response.attempt_state
        self.error = None
        self.field_errors.pop("otp", None)
        self.draft.mark_otp_requested()
        logger.info(f"OTP sent to {response.masked_mobile}")
        return True

    async def verify_otp(self, code: str) -> bool:
        """Check a code with the backend once the local gate allows an attempt."""
        if self.phase != WizardPhase.EDITING:
            return False
        if self.draft.otp_verified:
            return True
        if self._otp_mobile is None or self.otp_attempt_state is None:
            self.field_errors = {"otp": "Request a verification code first"}
            return False

        decision = self.otp_decision()
        if not decision.allowed:
            self.field_errors = {"otp": decision.reason}
            logger.info(f"OTP attempt held locally: {decision.reason}")
            return False

        length = get_settings().OTP_LENGTH
        if not isinstance(code, str) or not code.isdigit() or len(code) != length:
            self.field_errors = {"otp": f"Enter the {length}-digit code"}
            return False

        try:
            response = await self.remote.verify_otp(self.session_id, self._otp_mobile, code)
        except WizardError as exc:
            return self._otp_failed(exc)

        self.otp_attempt_state = response.attempt_state
        if not response.verified:
            self.field_errors = {"otp": response.message}
            return False
        self.error = None
        self.field_errors.pop("otp", None)
        self.mark_otp_verified()
        return True

    def observe_session(self, session: SessionState, now=None) -> bool:
        """Feed the latest session state. Returns True when an expiry warning is due."""
        if not session_is_live(session, now):
            if self.sync is not None:
                self.sync.mark_session_expired(SessionExpiredError(session_id=session.session_id))
            return False
        return session_needs_warning(session, now)

    # ─── Navigation ───

    async def advance(self) -> bool:
        """Validate the current step, save it remotely, and move forward."""
        if self.phase != WizardPhase.EDITING:
            return False
        definition = self.current_definition
        result = self.validate(definition)
        self.field_errors = dict(result.field_errors)

        if definition.id == StepId.PRE_APPLICATION and not self.is_step_complete(definition):
            if result.ok:
                self.field_errors["otp"] = "Verify your mobile number to continue"
            logger.info("Advance from pre-application blocked until OTP is verified")
            return False
        if not result.ok and not definition.is_optional:
            logger.info(f"Advance from step {definition.number} blocked: {sorted(result.field_errors)}")
            return False

        if self.sync is not None and not self.sync.session_expired:
            await self.sync.save_step(definition, is_complete=result.ok)

        next_step = min(definition.number + 1, LAST_STEP)
        self.draft.set_current_step(next_step)
        logger.debug(f"Advanced {definition.number} -> {next_step}")
        return True

    def retreat(self) -> bool:
        if self.phase != WizardPhase.EDITING:
            return False
        previous = max(self.current_step - 1, self.start_step)
        if self.sync is not None:
            self.sync.schedule(self.current_step)
        self.field_errors = {}
        self.draft.set_current_step(previous)
        logger.debug(f"Retreated to {previous}")
        return True

    def jump_to(self, step: int) -> bool:
        if self.phase != WizardPhase.EDITING or step_at(step) is None:
            return False
        if step < self.start_step or step > self.highest_reachable_step:
            logger.info(f"Jump to step {step} refused (reachable up to {self.highest_reachable_step})")
            return False
        self.field_errors = {}
        self.draft.set_current_step(step)
        logger.debug(f"Jumped to {step}")
        return True

    # ─── Submission ───

    def _submission_blocker(self) -> Optional[StepValidationError]:
        for definition in required_steps():
            if not self.is_step_complete(definition):
                result = self.validate(definition)
                return StepValidationError(
                    f"Step {definition.number} ({definition.title}) is incomplete",
                    definition.number,
                    result.field_errors,
                )
        missing = {}
        if not self.draft.terms_accepted:
            missing["terms_accepted"] = "You must accept the terms and conditions"
        if not self.draft.declaration_accepted:
            missing["declaration_accepted"] = "You must accept the declaration"
        if missing:
            return StepValidationError("Terms and declaration must be accepted", LAST_STEP, missing)
        return None

    async def submit(self) -> bool:
        """Submit the application. Failures become `error`; nothing is raised."""
        if self.phase != WizardPhase.EDITING:
            return self.phase == WizardPhase.SUBMITTED

        blocker = self._submission_blocker()
        if blocker is not None:
            self.error = blocker
            self.field_errors = dict(blocker.field_errors)
            logger.info(f"Submit blocked: {blocker.message}")
            return False
        if self.remote is None or self.session_id is None:
            self.error = WizardError("No remote service to submit to")
            return False

        self.phase = WizardPhase.SUBMITTING
        try:
            if self.sync is not None:
                await self.sync.flush()
                if self.sync.session_expired:
                    raise self.sync.last_error or SessionExpiredError(session_id=self.session_id)
            response = await self.remote.submit(
                self.session_id, self.draft.terms_accepted, self.draft.declaration_accepted,
            )
        except SubmissionRejectedError as exc:
            self.phase = WizardPhase.EDITING
            self.error = exc
            self.field_errors = dict(exc.field_errors)
            target = LAST_STEP
            if exc.step_number is not None and step_at(exc.step_number) is not None:
                target = exc.step_number
            self.draft.set_current_step(target)
            logger.info(f"Submission rejected at step {target}: {exc.message}")
            return False
        except SessionExpiredError as exc:
            self.phase = WizardPhase.EDITING
            self.error = exc
            if self.sync is not None:
                self.sync.mark_session_expired(exc)
            return False
        except WizardError as exc:
            self.phase = WizardPhase.EDITING
            self.error = exc
            logger.warning(f"Submission failed: {exc}")
            return False

        self.submission = response
        self.error = None
        self.draft.reference_number = response.reference_number
        self.draft.submitted_at = response.submitted_at
        self.draft.set_status(ApplicationStatus.SUBMITTED)
        self.phase = WizardPhase.SUBMITTED
        self._retire()
        logger.info(f"Application {response.reference_number} submitted")
        return True

    def discard(self) -> None:
        """User-initiated abandon: the local draft is cleared."""
        if self.phase == WizardPhase.SUBMITTED:
            return
        self.phase = WizardPhase.ABANDONED
        self._retire()
        logger.info(f"Draft {self.draft.id} discarded")
