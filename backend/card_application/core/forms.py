"""
Application Form Records — one typed sub-record per wizard step.

These are storage shapes, not validation rules: every field accepts partial,
blank input so the draft can hold whatever the applicant has typed so far.
Money and percentages are decimal strings, never floats.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApplicationMode(str, Enum):
    SELF = "SELF"
    ASSISTED = "ASSISTED"


class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_OTP = "PENDING_OTP"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DOCUMENTS_REQUIRED = "DOCUMENTS_REQUIRED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CARD_ISSUED = "CARD_ISSUED"


class FormRecord(BaseModel):
    """Base for step records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def new_row_id() -> str:
    return uuid.uuid4().hex


# ──────────────── Shared ────────────────

class AddressData(FormRecord):
    address_line_1: str = ""
    address_line_2: str = ""
    city: str = ""
    district: str = ""
    postal_code: str = ""
    country: str = "Bangladesh"


# ──────────────── Step 0: Pre-Application ────────────────

class PreApplicationData(FormRecord):
    full_name: str = ""
    nid_number: str = ""
    date_of_birth: str = ""
    mobile_number: str = ""
    email: str = ""


# ──────────────── Step 1: Card Selection ────────────────

class CardSelectionData(FormRecord):
    card_network: str = "VISA"
    card_tier: str = "GOLD"
    card_category: str = "REGULAR"
    expected_credit_limit: str = "100000"


# ──────────────── Step 2: Personal Information ────────────────

class PersonalInfoData(FormRecord):
    name_on_card: str = ""
    nationality: str = "Bangladeshi"
    home_district: str = ""
    gender: str = "MALE"
    date_of_birth: str = ""
    religion: str = "ISLAM"
    father_name: str = ""
    mother_name: str = ""
    marital_status: str = "SINGLE"
    spouse_name: str = ""
    spouse_profession: str = ""
    nid_number: str = ""
    tin: str = ""
    passport_number: str = ""
    passport_issue_date: str = ""
    passport_expiry_date: str = ""
    permanent_address: AddressData = Field(default_factory=AddressData)
    present_address: AddressData = Field(default_factory=AddressData)
    same_as_permanent: bool = False
    mailing_address_type: str = "PRESENT"
    mobile_number: str = ""
    email: str = ""
    educational_qualification: str = "GRADUATE"


# ──────────────── Step 3: Professional Information ────────────────

class ProfessionalInfoData(FormRecord):
    customer_segment: str = "SALARIED"
    organization_name: str = ""
    parent_group: str = ""
    department: str = ""
    designation: str = ""
    office_address: AddressData = Field(default_factory=AddressData)
    length_of_service_years: int = 0
    length_of_service_months: int = 0
    total_experience_years: int = 0
    total_experience_months: int = 0
    previous_employer: str = ""
    previous_designation: str = ""


# ──────────────── Step 4: Monthly Income ────────────────

class SalariedIncomeData(FormRecord):
    gross_salary: str = ""
    total_deduction: str = ""
    net_salary: str = ""


class BusinessIncomeData(FormRecord):
    gross_income: str = ""
    total_expenses: str = ""
    net_income: str = ""


class AdditionalIncomeSource(FormRecord):
    source: str = ""
    amount: str = ""


class MonthlyIncomeData(FormRecord):
    is_salaried: bool = True
    salaried_income: Optional[SalariedIncomeData] = None
    business_income: Optional[BusinessIncomeData] = None
    additional_income_sources: List[AdditionalIncomeSource] = Field(default_factory=list)


# ──────────────── Steps 5-6: Banking Activity (optional) ────────────────

class BankAccountData(FormRecord):
    id: str = Field(default_factory=new_row_id)
    bank_name: str = ""
    account_type: str = "SAVINGS"
    account_number: str = ""
    branch: str = ""


class CreditFacilityData(FormRecord):
    id: str = Field(default_factory=new_row_id)
    bank_name: str = ""
    facility_type: str = "CREDIT_CARD"
    # Credit card number or loan account number
    account_number: str = ""
    limit: str = ""
    monthly_installment: str = ""


# ──────────────── Step 7: MTB Protection Plan ────────────────

class NomineeData(FormRecord):
    nominee_name: str = ""
    relationship: str = "SPOUSE"
    date_of_birth: str = ""
    contact_address: str = ""
    mobile_number: str = ""
    photo_url: str = ""
    declaration_accepted: bool = False


# ──────────────── Step 8: Supplementary Card (optional) ────────────────

class SupplementaryCardData(FormRecord):
    full_name: str = ""
    name_on_card: str = ""
    relationship: str = "SPOUSE"
    date_of_birth: str = ""
    gender: str = "MALE"
    father_name: str = ""
    mother_name: str = ""
    spouse_name: str = ""
    present_address: AddressData = Field(default_factory=AddressData)
    permanent_address: AddressData = Field(default_factory=AddressData)
    same_as_permanent: bool = False
    nid_or_birth_cert_no: str = ""
    tin: str = ""
    passport_number: str = ""
    passport_issue_date: str = ""
    passport_expiry_date: str = ""
    spending_limit_percentage: str = "100"


# ──────────────── Step 9: References ────────────────

class ReferenceData(FormRecord):
    referee_name: str = ""
    relationship: str = "COLLEAGUE"
    mobile_number: str = ""
    work_address: str = ""
    residence_address: str = ""


class ReferencesData(FormRecord):
    reference_1: ReferenceData = Field(default_factory=ReferenceData)
    reference_2: ReferenceData = Field(default_factory=lambda: ReferenceData(relationship="FRIEND"))


# ──────────────── Step 10: Image & Signature ────────────────

class ImageSignatureData(FormRecord):
    """Uploaded artifacts are opaque blobs referenced by URL."""

    primary_applicant_photo: str = ""
    supplementary_applicant_photo: str = ""
    primary_applicant_signature: str = ""
    supplementary_applicant_signature: str = ""


# ──────────────── Step 11: Auto Debit ────────────────

class AutoDebitData(FormRecord):
    auto_debit_preference: str = "MINIMUM_AMOUNT_DUE"
    account_name: str = ""
    mtb_account_number: str = ""


# ──────────────── Step 12: Most Important Document ────────────────

class DeclarationItem(FormRecord):
    id: str
    question: str
    answer: Optional[bool] = None


class DocumentChecklistItem(FormRecord):
    id: str
    document_type: str
    label: str
    required: bool = False
    uploaded: bool = False
    file_url: str = ""


def default_declarations() -> List[DeclarationItem]:
    return [
        DeclarationItem(id="1", question="Are you a politically exposed person (PEP)?"),
        DeclarationItem(id="2", question="Do you have any existing MTB credit card?"),
        DeclarationItem(id="3", question="Have you ever been declared bankrupt?"),
        DeclarationItem(id="4", question="Do you have any pending litigation?"),
    ]


def default_document_checklist() -> List[DocumentChecklistItem]:
    return [
        DocumentChecklistItem(id="nid", document_type="NID", label="National ID Card (Both Sides)", required=True),
        DocumentChecklistItem(id="photo", document_type="PHOTOGRAPH", label="Passport Size Photograph", required=True),
        DocumentChecklistItem(id="salary", document_type="SALARY_SLIP", label="Last 3 Months Salary Slip"),
        DocumentChecklistItem(id="bank_statement", document_type="BANK_STATEMENT", label="Last 6 Months Bank Statement", required=True),
        DocumentChecklistItem(id="tin", document_type="TIN_CERTIFICATE", label="TIN Certificate (if available)"),
    ]


class MIDData(FormRecord):
    declarations: List[DeclarationItem] = Field(default_factory=default_declarations)
    document_checklist: List[DocumentChecklistItem] = Field(default_factory=default_document_checklist)


# ──────────────── Versioning ────────────────

class DraftVersion(FormRecord):
    step_number: int
    step_name: str
    version: int
    saved_at: datetime
    is_complete: bool = False
