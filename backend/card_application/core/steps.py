"""
Step Registry — the fixed, ordered catalog of application steps.

Step 0 is the OTP-gated pre-application; steps 1-12 are the content steps of
the credit card form. The catalog is immutable after import.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class StepId(str, Enum):
    PRE_APPLICATION = "pre-application"
    CARD_SELECTION = "card-selection"
    PERSONAL_INFO = "personal-info"
    PROFESSIONAL_INFO = "professional-info"
    MONTHLY_INCOME = "monthly-income"
    BANK_ACCOUNTS = "bank-accounts"
    CREDIT_FACILITIES = "credit-facilities"
    NOMINEE = "nominee"
    SUPPLEMENTARY = "supplementary"
    REFERENCES = "references"
    DOCUMENTS = "documents"
    AUTO_DEBIT = "auto-debit"
    MID = "mid"


@dataclass(frozen=True)
class StepDefinition:
    id: StepId
    number: int
    title: str
    description: str
    is_optional: bool
    # Attribute on ApplicationDraft holding this step's sub-record
    field: str

    @property
    def name(self) -> str:
        return self.id.value


_STEPS: Tuple[StepDefinition, ...] = (
    StepDefinition(StepId.PRE_APPLICATION, 0, "Pre-Application", "Verify your mobile number", False, "pre_application"),
    StepDefinition(StepId.CARD_SELECTION, 1, "Card Selection", "Choose your card type and limit", False, "card_selection"),
    StepDefinition(StepId.PERSONAL_INFO, 2, "Personal Information", "Your personal details", False, "personal_info"),
    StepDefinition(StepId.PROFESSIONAL_INFO, 3, "Professional Information", "Your employment details", False, "professional_info"),
    StepDefinition(StepId.MONTHLY_INCOME, 4, "Monthly Income", "Income and salary details", False, "monthly_income"),
    StepDefinition(StepId.BANK_ACCOUNTS, 5, "Bank Accounts", "Your existing bank accounts", True, "bank_accounts"),
    StepDefinition(StepId.CREDIT_FACILITIES, 6, "Credit & Loans", "Existing credit facilities", True, "credit_facilities"),
    StepDefinition(StepId.NOMINEE, 7, "MTB Protection Plan", "Nominee details for MPP", False, "nominee"),
    StepDefinition(StepId.SUPPLEMENTARY, 8, "Supplementary Card", "Add-on card holder details", True, "supplementary_card"),
    StepDefinition(StepId.REFERENCES, 9, "References", "Two mandatory references", False, "references"),
    StepDefinition(StepId.DOCUMENTS, 10, "Documents", "Upload photos & signatures", False, "image_signature"),
    StepDefinition(StepId.AUTO_DEBIT, 11, "Auto Debit", "Payment instruction", False, "auto_debit"),
    StepDefinition(StepId.MID, 12, "Declaration & Documents", "MID declarations and checklist", False, "mid"),
)

TOTAL_STEPS = len(_STEPS)
FIRST_STEP = 0
LAST_STEP = TOTAL_STEPS - 1


def list_steps() -> Tuple[StepDefinition, ...]:
    """Ordered sequence of every step definition."""
    return _STEPS


def step_at(number: int) -> Optional[StepDefinition]:
    """Step definition at position `number`, or None when out of range."""
    if 0 <= number < TOTAL_STEPS:
        return _STEPS[number]
    return None


def step_by_id(step_id) -> Optional[StepDefinition]:
    """Look up a step by its id (StepId or its string value)."""
    for step in _STEPS:
        if step.id == step_id or step.id.value == step_id:
            return step
    return None


def resolve_step(step) -> Optional[StepDefinition]:
    """Accept a StepDefinition, step number or step id."""
    if isinstance(step, StepDefinition):
        return step
    if isinstance(step, int) and not isinstance(step, bool):
        return step_at(step)
    return step_by_id(step)


def required_steps() -> Tuple[StepDefinition, ...]:
    return tuple(s for s in _STEPS if not s.is_optional)
