"""
Step Validator — pure, per-step validation of (possibly partial) step data.

Each step has a pydantic schema describing well-formed data plus a list of
cross-field rules. Validation never raises for bad input; it returns
field-level messages keyed by snake_case field path.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from card_application.config import get_settings
from card_application.core.draft import ApplicationDraft, step_record
from card_application.core.forms import ApplicationMode
from card_application.core.steps import StepDefinition, StepId, list_steps, resolve_step
from card_application.utils.case import dict_keys_to_snake
from card_application.utils.validators import (
    age_on,
    parse_iso_date,
    to_decimal,
    validate_amount,
    validate_bd_mobile,
    validate_email,
    validate_nid,
    validate_person_name,
    validate_postal_code,
    validate_tin,
)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    field_errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_errors(cls, errors: Dict[str, str]) -> "ValidationResult":
        return cls(ok=not errors, field_errors=dict(errors))


def _check(predicate: Callable[[Any], bool], message: str):
    def check(value):
        if not predicate(value):
            raise ValueError(message)
        return value
    return check


def _check_name(value: str) -> str:
    if len(value) < 2:
        raise ValueError("Name must be at least 2 characters")
    if len(value) > 100:
        raise ValueError("Name must be less than 100 characters")
    if not validate_person_name(value):
        raise ValueError("Name can only contain letters, spaces, and dots")
    return value


def Text(min_length: int = 0, max_length: int = 300):
    return Annotated[str, StringConstraints(min_length=min_length, max_length=max_length)]


Name = Annotated[str, AfterValidator(_check_name)]
OptionalName = Annotated[str, AfterValidator(lambda v: v if not v else _check_name(v))]
BlockLettersName = Annotated[str, AfterValidator(_check(
    lambda v: validate_person_name(v, block_letters=True), "Name must be in BLOCK LETTERS (A-Z only)",
))]
Nid = Annotated[str, AfterValidator(_check(validate_nid, "NID must be 10, 13, or 17 digits"))]
Mobile = Annotated[str, AfterValidator(_check(
    validate_bd_mobile, "Enter a valid Bangladesh mobile number (01XXXXXXXXX)",
))]
Email = Annotated[str, AfterValidator(_check(validate_email, "Invalid email address"))]
Amount = Annotated[str, AfterValidator(_check(validate_amount, "Invalid amount format"))]
IsoDate = Annotated[str, AfterValidator(_check(lambda v: parse_iso_date(v) is not None, "Invalid date"))]
OptionalIsoDate = Annotated[str, AfterValidator(_check(
    lambda v: not v or parse_iso_date(v) is not None, "Invalid date",
))]
Tin = Annotated[str, AfterValidator(_check(validate_tin, "TIN must be 12 digits"))]
PostalCode = Annotated[str, AfterValidator(_check(validate_postal_code, "Postal code must be 4 digits"))]

Gender = Literal["MALE", "FEMALE", "OTHER"]


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AddressSchema(_Schema):
    address_line_1: Annotated[str, AfterValidator(_check(lambda v: 5 <= len(v) <= 200, "Address is required"))]
    address_line_2: Text(0, 200) = ""
    city: Annotated[str, AfterValidator(_check(lambda v: 2 <= len(v) <= 50, "City is required"))]
    district: Annotated[str, AfterValidator(_check(lambda v: 2 <= len(v) <= 50, "District is required"))]
    postal_code: PostalCode
    country: Text(2, 50) = "Bangladesh"


class PreApplicationSchema(_Schema):
    full_name: Name
    nid_number: Nid
    date_of_birth: IsoDate
    mobile_number: Mobile
    email: Email


class CardSelectionSchema(_Schema):
    card_network: Literal["MASTERCARD", "VISA", "UNIONPAY"]
    card_tier: Literal["CLASSIC", "GOLD", "PLATINUM", "TITANIUM", "SIGNATURE", "WORLD"]
    card_category: Literal["REGULAR", "YAQEEN", "CO_BRANDED"]
    expected_credit_limit: Amount


class PersonalInfoSchema(_Schema):
    name_on_card: BlockLettersName
    nationality: Text(2, 50)
    gender: Gender
    date_of_birth: IsoDate
    religion: Literal["ISLAM", "HINDUISM", "CHRISTIANITY", "BUDDHISM", "OTHER"]
    father_name: Name
    mother_name: Name
    marital_status: Literal["SINGLE", "MARRIED"]
    spouse_name: OptionalName = ""
    spouse_profession: Text(0, 100) = ""
    nid_number: Nid
    tin: Tin = ""
    passport_number: Text(0, 20) = ""
    passport_issue_date: OptionalIsoDate = ""
    passport_expiry_date: OptionalIsoDate = ""
    permanent_address: AddressSchema
    present_address: AddressSchema
    same_as_permanent: bool
    mailing_address_type: Literal["PRESENT", "PERMANENT", "OFFICE"]
    mobile_number: Mobile
    email: Email
    educational_qualification: Literal["SSC", "HSC", "GRADUATE", "POST_GRADUATE", "PHD", "OTHER"]


class ProfessionalInfoSchema(_Schema):
    customer_segment: Literal["SALARIED", "BUSINESS_PERSON", "SELF_EMPLOYED", "LANDLORD", "OTHER"]
    organization_name: Annotated[str, AfterValidator(_check(lambda v: 2 <= len(v) <= 150, "Organization name is required"))]
    parent_group: Text(0, 150) = ""
    department: Text(0, 100) = ""
    designation: Annotated[str, AfterValidator(_check(lambda v: 2 <= len(v) <= 100, "Designation is required"))]
    office_address: AddressSchema
    length_of_service_years: Annotated[int, Field(ge=0, le=50)]
    length_of_service_months: Annotated[int, Field(ge=0, le=11)]
    total_experience_years: Annotated[int, Field(ge=0, le=60)]
    total_experience_months: Annotated[int, Field(ge=0, le=11)]
    previous_employer: Text(0, 150) = ""
    previous_designation: Text(0, 100) = ""


class SalariedIncomeSchema(_Schema):
    gross_salary: Amount
    total_deduction: Amount
    net_salary: Amount


class BusinessIncomeSchema(_Schema):
    gross_income: Amount
    total_expenses: Amount
    net_income: Amount


class AdditionalIncomeSourceSchema(_Schema):
    source: Text(2, 100)
    amount: Amount


class MonthlyIncomeSchema(_Schema):
    is_salaried: bool
    salaried_income: Optional[SalariedIncomeSchema] = None
    business_income: Optional[BusinessIncomeSchema] = None
    additional_income_sources: Annotated[List[AdditionalIncomeSourceSchema], Field(max_length=3)] = []


class BankAccountSchema(_Schema):
    id: Text(1, 64)
    bank_name: Text(2, 100)
    account_type: Literal["SAVINGS", "CURRENT", "FDR", "DPS", "OTHER"]
    account_number: Text(5, 30)
    branch: Text(2, 100)


class CreditFacilitySchema(_Schema):
    id: Text(1, 64)
    bank_name: Text(2, 100)
    facility_type: Literal["CREDIT_CARD", "HOME_LOAN", "CAR_LOAN", "PERSONAL_LOAN", "OTHER"]
    account_number: Text(5, 30)
    limit: Amount
    monthly_installment: Amount


class NomineeSchema(_Schema):
    nominee_name: Name
    relationship: Literal["SPOUSE", "PARENT", "SON", "DAUGHTER", "OTHER"]
    date_of_birth: IsoDate
    contact_address: Text(10, 300)
    mobile_number: Mobile
    photo_url: str = ""
    declaration_accepted: Annotated[bool, AfterValidator(_check(
        lambda v: v is True, "You must accept the MPP declaration",
    ))]


class SupplementaryCardSchema(_Schema):
    full_name: Name
    name_on_card: BlockLettersName
    relationship: Literal["FATHER", "MOTHER", "SON", "DAUGHTER", "SPOUSE", "OTHER"]
    date_of_birth: IsoDate
    gender: Gender
    father_name: Name
    mother_name: Name
    spouse_name: OptionalName = ""
    present_address: AddressSchema
    permanent_address: AddressSchema
    same_as_permanent: bool
    nid_or_birth_cert_no: Text(10, 20)
    tin: Tin = ""
    passport_number: Text(0, 20) = ""
    passport_issue_date: OptionalIsoDate = ""
    passport_expiry_date: OptionalIsoDate = ""
    spending_limit_percentage: Annotated[str, AfterValidator(_check(
        lambda v: validate_amount(v) and Decimal(1) <= Decimal(v) <= Decimal(100),
        "Spending limit must be between 1 and 100 percent",
    ))]


class ReferenceSchema(_Schema):
    referee_name: Name
    relationship: Literal["COLLEAGUE", "FRIEND", "RELATIVE", "EMPLOYER", "OTHER"]
    mobile_number: Mobile
    work_address: Text(10, 300)
    residence_address: Text(10, 300)


class ReferencesSchema(_Schema):
    reference_1: ReferenceSchema
    reference_2: ReferenceSchema


class ImageSignatureSchema(_Schema):
    primary_applicant_photo: Annotated[str, AfterValidator(_check(bool, "Primary applicant photo is required"))]
    supplementary_applicant_photo: str = ""
    primary_applicant_signature: Annotated[str, AfterValidator(_check(bool, "Primary applicant signature is required"))]
    supplementary_applicant_signature: str = ""


class AutoDebitSchema(_Schema):
    auto_debit_preference: Literal["MINIMUM_AMOUNT_DUE", "TOTAL_OUTSTANDING"]
    account_name: Text(2, 100)
    mtb_account_number: Text(10, 20)


class DeclarationItemSchema(_Schema):
    id: str
    question: str
    answer: Optional[bool] = None


class DocumentChecklistItemSchema(_Schema):
    id: str
    document_type: str
    label: str
    required: bool
    uploaded: bool
    file_url: str = ""


class MIDSchema(_Schema):
    declarations: List[DeclarationItemSchema]
    document_checklist: List[DocumentChecklistItemSchema]


# ──────────────── Cross-field rules ────────────────

Rule = Callable[[Dict[str, Any], date], Dict[str, str]]


def _adult_rule(message: str) -> Rule:
    def rule(data: Dict[str, Any], today: date) -> Dict[str, str]:
        born = parse_iso_date(data.get("date_of_birth"))
        if born is None:
            return {}
        if age_on(born, today) < get_settings().MIN_APPLICANT_AGE:
            return {"date_of_birth": message}
        return {}
    return rule


def _spouse_rule(data: Dict[str, Any], today: date) -> Dict[str, str]:
    if data.get("marital_status") != "MARRIED":
        return {}
    spouse_name = data.get("spouse_name")
    if not isinstance(spouse_name, str):
        # A wrongly typed value is already reported by the schema
        return {} if spouse_name is not None else {"spouse_name": "Spouse name is required for married applicants"}
    if not spouse_name.strip():
        return {"spouse_name": "Spouse name is required for married applicants"}
    return {}


def _credit_limit_rule(data: Dict[str, Any], today: date) -> Dict[str, str]:
    limit = to_decimal(data.get("expected_credit_limit"))
    minimum = Decimal(get_settings().MIN_CREDIT_LIMIT)
    if limit is not None and limit < minimum:
        return {"expected_credit_limit": f"Minimum credit limit is BDT {minimum:,}"}
    return {}


def _is_populated(record: Any) -> bool:
    if not isinstance(record, dict):
        return record is not None
    return any(value not in (None, "") for value in record.values())


def _income_source_rule(data: Dict[str, Any], today: date) -> Dict[str, str]:
    salaried = _is_populated(data.get("salaried_income"))
    business = _is_populated(data.get("business_income"))
    if data.get("is_salaried", True):
        if not salaried:
            return {"salaried_income": "Income details are required based on your employment type"}
        if business:
            return {"business_income": "Provide salaried income only"}
    else:
        if not business:
            return {"business_income": "Income details are required based on your employment type"}
        if salaried:
            return {"salaried_income": "Provide business income only"}
    return {}


def _mappings(items: Any) -> List[Dict[str, Any]]:
    """The dict entries of a list; anything else is left to the schema."""
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _mid_rule(data: Dict[str, Any], today: date) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    declarations = _mappings(data.get("declarations"))
    if any(item.get("answer") is None for item in declarations):
        errors["declarations"] = "All declarations must be answered"
    checklist = _mappings(data.get("document_checklist"))
    if any(item.get("required") and not item.get("uploaded") for item in checklist):
        errors["document_checklist"] = "All required documents must be uploaded"
    return errors


def _drop_unused_income(data: Dict[str, Any]) -> Dict[str, Any]:
    """Blank, unselected income sub-records are not validated."""
    data = dict(data)
    for key in ("salaried_income", "business_income"):
        if not _is_populated(data.get(key)):
            data.pop(key, None)
    return data


_SCHEMAS: Dict[StepId, type] = {
    StepId.PRE_APPLICATION: PreApplicationSchema,
    StepId.CARD_SELECTION: CardSelectionSchema,
    StepId.PERSONAL_INFO: PersonalInfoSchema,
    StepId.PROFESSIONAL_INFO: ProfessionalInfoSchema,
    StepId.MONTHLY_INCOME: MonthlyIncomeSchema,
    StepId.BANK_ACCOUNTS: BankAccountSchema,
    StepId.CREDIT_FACILITIES: CreditFacilitySchema,
    StepId.NOMINEE: NomineeSchema,
    StepId.SUPPLEMENTARY: SupplementaryCardSchema,
    StepId.REFERENCES: ReferencesSchema,
    StepId.DOCUMENTS: ImageSignatureSchema,
    StepId.AUTO_DEBIT: AutoDebitSchema,
    StepId.MID: MIDSchema,
}

_RULES: Dict[StepId, List[Rule]] = {
    StepId.PRE_APPLICATION: [_adult_rule("You must be at least 18 years old to apply")],
    StepId.CARD_SELECTION: [_credit_limit_rule],
    StepId.PERSONAL_INFO: [_adult_rule("You must be at least 18 years old to apply"), _spouse_rule],
    StepId.MONTHLY_INCOME: [_income_source_rule],
    StepId.SUPPLEMENTARY: [_adult_rule("Supplementary card holder must be at least 18 years old")],
    StepId.MID: [_mid_rule],
}

# Repeatable sections: the step data is a list of rows
_LIST_STEPS = {StepId.BANK_ACCOUNTS, StepId.CREDIT_FACILITIES}


def _message(error: Dict[str, Any]) -> str:
    if error["type"] == "missing":
        return "This field is required"
    if error["type"] == "value_error" and "error" in error.get("ctx", {}):
        return str(error["ctx"]["error"])
    return error["msg"]


def _schema_errors(schema: type, data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    try:
        schema.model_validate(data)
    except ValidationError as exc:
        errors: Dict[str, str] = {}
        for error in exc.errors():
            path = ".".join(str(part) for part in error["loc"])
            key = ".".join(part for part in (prefix, path) if part) or "__root__"
            errors.setdefault(key, _message(error))
        return errors
    return {}


def _normalize(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump()
    if isinstance(data, (list, tuple)):
        return [_normalize(row) for row in data]
    return dict_keys_to_snake(data)


class StepValidator:
    """Validates one step's data against its schema and cross-field rules."""

    @staticmethod
    def validate(step, data: Any, today: Optional[date] = None) -> ValidationResult:
        """Validate step data; `step` may be a number, id or StepDefinition.

        Callable on partial data: missing fields are reported, never raised.
        """
        definition: Optional[StepDefinition] = resolve_step(step)
        if definition is None:
            return ValidationResult.from_errors({"__root__": f"Unknown step: {step}"})

        today = today or date.today()
        data = _normalize(data)
        schema = _SCHEMAS[definition.id]

        if definition.id in _LIST_STEPS:
            if data is not None and not isinstance(data, list):
                return ValidationResult.from_errors({"__root__": "Step data must be a list of rows"})
            errors: Dict[str, str] = {}
            for index, row in enumerate(data or []):
                row = row if isinstance(row, dict) else {}
                errors.update(_schema_errors(schema, row, prefix=str(row.get("id") or index)))
            return ValidationResult.from_errors(errors)

        if data is None:
            if definition.id == StepId.SUPPLEMENTARY:
                # Absent supplementary card means "not applicable"
                return ValidationResult(ok=True)
            data = {}
        if not isinstance(data, dict):
            return ValidationResult.from_errors({"__root__": "Step data must be a mapping"})

        if definition.id == StepId.MONTHLY_INCOME:
            data = _drop_unused_income(data)

        errors = _schema_errors(schema, data)
        for rule in _RULES.get(definition.id, []):
            for key, message in rule(data, today).items():
                errors.setdefault(key, message)
        return ValidationResult.from_errors(errors)


validate_step = StepValidator.validate


def validate_application(draft: ApplicationDraft, today: Optional[date] = None) -> Dict[int, ValidationResult]:
    """Failing steps of a whole draft, keyed by step number.

    Optional steps validate whatever they hold: no rows, or no supplementary
    card, is valid. Assisted drafts skip the pre-application step.
    """
    failures: Dict[int, ValidationResult] = {}
    for definition in list_steps():
        if definition.id == StepId.PRE_APPLICATION and draft.mode == ApplicationMode.ASSISTED:
            continue
        result = StepValidator.validate(definition, step_record(draft, definition), today=today)
        if not result.ok:
            failures[definition.number] = result
    return failures
