"""
Application Draft — the aggregate root of a credit card application.

All step data lives here together with progress metadata. The draft is
mutated only through the named operations below; each one merges shallowly
into the step's sub-record, refreshes ``updated_at`` and notifies
subscribers (the autosave writer). No operation validates its input.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel

from card_application.core.errors import InvalidStatusTransition
from card_application.core.forms import (
    ApplicationMode,
    ApplicationStatus,
    AutoDebitData,
    BankAccountData,
    CardSelectionData,
    CreditFacilityData,
    DraftVersion,
    FormRecord,
    ImageSignatureData,
    MIDData,
    MonthlyIncomeData,
    NomineeData,
    PersonalInfoData,
    PreApplicationData,
    ProfessionalInfoData,
    ReferencesData,
    SupplementaryCardData,
)
from card_application.core.steps import FIRST_STEP, LAST_STEP, StepDefinition, StepId, resolve_step
from card_application.utils.case import dict_keys_to_snake


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ALLOWED_TRANSITIONS = {
    ApplicationStatus.DRAFT: {ApplicationStatus.PENDING_OTP, ApplicationStatus.SUBMITTED},
    ApplicationStatus.PENDING_OTP: {ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED},
    ApplicationStatus.SUBMITTED: {
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.DOCUMENTS_REQUIRED,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.DOCUMENTS_REQUIRED,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.DOCUMENTS_REQUIRED: {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED},
    ApplicationStatus.APPROVED: {ApplicationStatus.CARD_ISSUED},
    ApplicationStatus.REJECTED: set(),
    ApplicationStatus.CARD_ISSUED: set(),
}


def _as_changes(changes: Any) -> Dict[str, Any]:
    if changes is None:
        return {}
    if isinstance(changes, BaseModel):
        return changes.model_dump(exclude_unset=True)
    return dict_keys_to_snake(dict(changes))


def _merge(record: FormRecord, changes: Any) -> FormRecord:
    """Shallow merge: top-level keys in `changes` replace, the rest are kept."""
    return type(record).model_validate({**record.model_dump(), **_as_changes(changes)})


class ApplicationDraft(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=lambda: utcnow().strftime("APP%Y%m%d%H%M%S%f"))
    reference_number: str = ""
    mode: ApplicationMode = Field(frozen=True)
    status: ApplicationStatus = ApplicationStatus.DRAFT
    current_step: int = FIRST_STEP
    otp_verified: bool = False

    pre_application: PreApplicationData = Field(default_factory=PreApplicationData)
    card_selection: CardSelectionData = Field(default_factory=CardSelectionData)
    personal_info: PersonalInfoData = Field(default_factory=PersonalInfoData)
    professional_info: ProfessionalInfoData = Field(default_factory=ProfessionalInfoData)
    monthly_income: MonthlyIncomeData = Field(default_factory=MonthlyIncomeData)
    bank_accounts: List[BankAccountData] = Field(default_factory=list)
    credit_facilities: List[CreditFacilityData] = Field(default_factory=list)
    nominee: NomineeData = Field(default_factory=NomineeData)
    has_supplementary_card: bool = False
    supplementary_card: Optional[SupplementaryCardData] = None
    references: ReferencesData = Field(default_factory=ReferencesData)
    image_signature: ImageSignatureData = Field(default_factory=ImageSignatureData)
    auto_debit: AutoDebitData = Field(default_factory=AutoDebitData)
    mid: MIDData = Field(default_factory=MIDData)

    terms_accepted: bool = False
    declaration_accepted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    step_versions: List[DraftVersion] = Field(default_factory=list)

    _listeners: List[Callable[["ApplicationDraft"], None]] = PrivateAttr(default_factory=list)

    # ─── Subscriptions ───

    def subscribe(self, listener: Callable[["ApplicationDraft"], None]) -> Callable[[], None]:
        """Call `listener(draft)` after every mutation. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _touch(self) -> None:
        self.updated_at = utcnow()
        for listener in list(self._listeners):
            listener(self)

    def _update(self, field: str, changes: Any) -> None:
        setattr(self, field, _merge(getattr(self, field), changes))
        self._touch()

    def snapshot(self) -> "ApplicationDraft":
        """Detached deep copy without subscribers."""
        return ApplicationDraft.model_validate(self.model_dump())

    # ─── Step updates ───

    def update_pre_application(self, changes: Any) -> None:
        self._update("pre_application", changes)

    def update_card_selection(self, changes: Any) -> None:
        self._update("card_selection", changes)

    def update_personal_info(self, changes: Any) -> None:
        self._update("personal_info", changes)

    def update_professional_info(self, changes: Any) -> None:
        self._update("professional_info", changes)

    def update_monthly_income(self, changes: Any) -> None:
        self._update("monthly_income", changes)

    def update_nominee(self, changes: Any) -> None:
        self._update("nominee", changes)

    def update_references(self, changes: Any) -> None:
        self._update("references", changes)

    def update_image_signature(self, changes: Any) -> None:
        self._update("image_signature", changes)

    def update_auto_debit(self, changes: Any) -> None:
        self._update("auto_debit", changes)

    def update_mid(self, changes: Any) -> None:
        self._update("mid", changes)

    # ─── Repeatable sections ───

    def _add_row(self, field: str, model: Type[FormRecord], row: Any) -> FormRecord:
        new_row = _merge(model(), row)
        rows = getattr(self, field)
        if any(existing.id == new_row.id for existing in rows):
            raise ValueError(f"Row {new_row.id} already exists in {field}")
        setattr(self, field, [*rows, new_row])
        self._touch()
        return new_row

    def _update_row(self, field: str, row_id: str, changes: Any) -> Optional[FormRecord]:
        changes = _as_changes(changes)
        changes.pop("id", None)
        rows = getattr(self, field)
        for index, row in enumerate(rows):
            if row.id == row_id:
                updated = _merge(row, changes)
                setattr(self, field, [*rows[:index], updated, *rows[index + 1:]])
                self._touch()
                return updated
        return None

    def _remove_row(self, field: str, row_id: str) -> bool:
        rows = getattr(self, field)
        remaining = [row for row in rows if row.id != row_id]
        if len(remaining) == len(rows):
            return False
        setattr(self, field, remaining)
        self._touch()
        return True

    def add_bank_account(self, account: Any = None) -> BankAccountData:
        return self._add_row("bank_accounts", BankAccountData, account)

    def update_bank_account(self, account_id: str, changes: Any) -> Optional[BankAccountData]:
        return self._update_row("bank_accounts", account_id, changes)

    def remove_bank_account(self, account_id: str) -> bool:
        return self._remove_row("bank_accounts", account_id)

    def add_credit_facility(self, facility: Any = None) -> CreditFacilityData:
        return self._add_row("credit_facilities", CreditFacilityData, facility)

    def update_credit_facility(self, facility_id: str, changes: Any) -> Optional[CreditFacilityData]:
        return self._update_row("credit_facilities", facility_id, changes)

    def remove_credit_facility(self, facility_id: str) -> bool:
        return self._remove_row("credit_facilities", facility_id)

    # ─── Supplementary card ───

    def set_has_supplementary_card(self, has_card: bool) -> None:
        """Turning the card off discards its record; it is never kept hidden."""
        self.has_supplementary_card = bool(has_card)
        if not has_card:
            self.supplementary_card = None
        elif self.supplementary_card is None:
            self.supplementary_card = SupplementaryCardData()
        self._touch()

    def update_supplementary_card(self, changes: Any) -> None:
        self.has_supplementary_card = True
        self.supplementary_card = _merge(self.supplementary_card or SupplementaryCardData(), changes)
        self._touch()

    # ─── Flags, progress and status ───

    def set_terms_accepted(self, accepted: bool) -> None:
        self.terms_accepted = bool(accepted)
        self._touch()

    def set_declaration_accepted(self, accepted: bool) -> None:
        self.declaration_accepted = bool(accepted)
        self._touch()

    def mark_otp_requested(self) -> None:
        if not self.otp_verified and self.status == ApplicationStatus.DRAFT:
            self.status = ApplicationStatus.PENDING_OTP
        self._touch()

    def set_otp_verified(self, verified: bool) -> None:
        self.otp_verified = bool(verified)
        if verified and self.status == ApplicationStatus.PENDING_OTP:
            self.status = ApplicationStatus.DRAFT
        self._touch()

    def set_current_step(self, step: int) -> None:
        self.current_step = max(FIRST_STEP, min(int(step), LAST_STEP))
        self._touch()

    def set_status(self, status: ApplicationStatus) -> None:
        status = ApplicationStatus(status)
        if status == self.status:
            return
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(f"Cannot move application from {self.status.value} to {status.value}")
        self.status = status
        if status == ApplicationStatus.SUBMITTED and self.submitted_at is None:
            self.submitted_at = utcnow()
        self._touch()

    def step_version(self, step_number: int) -> int:
        for entry in self.step_versions:
            if entry.step_number == step_number:
                return entry.version
        return 0

    def record_step_version(self, entry: DraftVersion) -> bool:
        """Keep the highest accepted version per step. Returns False for stale entries."""
        if entry.version < self.step_version(entry.step_number):
            return False
        others = [v for v in self.step_versions if v.step_number != entry.step_number]
        self.step_versions = sorted([*others, entry], key=lambda v: v.step_number)
        self._touch()
        return True


def new_draft(mode: ApplicationMode = ApplicationMode.SELF) -> ApplicationDraft:
    """Fresh draft. Assisted sessions skip the OTP-gated pre-application step."""
    mode = ApplicationMode(mode)
    if mode == ApplicationMode.ASSISTED:
        return ApplicationDraft(mode=mode, otp_verified=True, current_step=FIRST_STEP + 1)
    return ApplicationDraft(mode=mode)


# ──────────────── Step payload codec ────────────────

_RECORD_TYPES: Dict[StepId, Type[FormRecord]] = {
    StepId.PRE_APPLICATION: PreApplicationData,
    StepId.CARD_SELECTION: CardSelectionData,
    StepId.PERSONAL_INFO: PersonalInfoData,
    StepId.PROFESSIONAL_INFO: ProfessionalInfoData,
    StepId.MONTHLY_INCOME: MonthlyIncomeData,
    StepId.NOMINEE: NomineeData,
    StepId.REFERENCES: ReferencesData,
    StepId.DOCUMENTS: ImageSignatureData,
    StepId.AUTO_DEBIT: AutoDebitData,
    StepId.MID: MIDData,
}


def _definition(step) -> StepDefinition:
    definition = resolve_step(step)
    if definition is None:
        raise KeyError(f"Unknown step: {step}")
    return definition


def step_record(draft: ApplicationDraft, step) -> Any:
    """The data a step component edits: a record, a list of rows, or None."""
    return getattr(draft, _definition(step).field)


def _dump(record: BaseModel) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


def step_payload(draft: ApplicationDraft, step) -> Dict[str, Any]:
    """camelCase wire payload for one step's remote save."""
    definition = _definition(step)
    if definition.id == StepId.BANK_ACCOUNTS:
        return {"bankAccounts": [_dump(row) for row in draft.bank_accounts]}
    if definition.id == StepId.CREDIT_FACILITIES:
        return {"creditFacilities": [_dump(row) for row in draft.credit_facilities]}
    if definition.id == StepId.SUPPLEMENTARY:
        card = draft.supplementary_card
        return {
            "hasSupplementaryCard": draft.has_supplementary_card,
            "supplementaryCard": _dump(card) if card is not None else None,
        }
    payload = _dump(getattr(draft, definition.field))
    if definition.id == StepId.PRE_APPLICATION:
        payload["otpVerified"] = draft.otp_verified
    elif definition.id == StepId.MID:
        payload["termsAccepted"] = draft.terms_accepted
        payload["declarationAccepted"] = draft.declaration_accepted
    return payload


def apply_step_payload(draft: ApplicationDraft, step, payload: Optional[Dict[str, Any]]) -> None:
    """Replace one step's data with a payload produced by `step_payload`."""
    definition = _definition(step)
    payload = payload or {}
    if definition.id == StepId.BANK_ACCOUNTS:
        draft.bank_accounts = [BankAccountData.model_validate(row) for row in payload.get("bankAccounts", [])]
    elif definition.id == StepId.CREDIT_FACILITIES:
        draft.credit_facilities = [
            CreditFacilityData.model_validate(row) for row in payload.get("creditFacilities", [])
        ]
    elif definition.id == StepId.SUPPLEMENTARY:
        has_card = bool(payload.get("hasSupplementaryCard"))
        card = payload.get("supplementaryCard")
        draft.has_supplementary_card = has_card
        if not has_card:
            draft.supplementary_card = None
        else:
            draft.supplementary_card = SupplementaryCardData.model_validate(card or {})
    else:
        record = _RECORD_TYPES[definition.id].model_validate(payload)
        setattr(draft, definition.field, record)
        if definition.id == StepId.PRE_APPLICATION and "otpVerified" in payload:
            draft.otp_verified = bool(payload["otpVerified"])
        elif definition.id == StepId.MID:
            draft.terms_accepted = bool(payload.get("termsAccepted", draft.terms_accepted))
            draft.declaration_accepted = bool(payload.get("declarationAccepted", draft.declaration_accepted))
    draft._touch()
