"""
Validators — Regex and rule-based validation for Bangladeshi applicant identifiers.
All helpers are pure and tolerate None / blank input.
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation


AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
MOBILE_PATTERN = re.compile(r"^01[3-9]\d{8}$")
NID_PATTERN = re.compile(r"^\d{10}$|^\d{13}$|^\d{17}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
NAME_PATTERN = re.compile(r"^[A-Za-z\s.]+$")
BLOCK_LETTERS_PATTERN = re.compile(r"^[A-Z\s.]+$")


def validate_nid(nid: str | None) -> bool:
    """Validate Bangladesh NID: 10, 13 or 17 digits."""
    if not nid:
        return False
    return bool(NID_PATTERN.match(nid.strip()))


def validate_bd_mobile(mobile: str | None) -> bool:
    """Validate Bangladesh mobile number: 11 digits, 01 followed by operator digit 3-9."""
    if not mobile:
        return False
    return bool(MOBILE_PATTERN.match(mobile.strip()))


def validate_email(email: str | None) -> bool:
    if not email or len(email) > 255:
        return False
    return bool(EMAIL_PATTERN.match(email.strip()))


def validate_person_name(name: str | None, block_letters: bool = False) -> bool:
    """Letters, spaces and dots, 2-100 chars. Name on card must be BLOCK LETTERS."""
    if not name or not 2 <= len(name) <= 100:
        return False
    pattern = BLOCK_LETTERS_PATTERN if block_letters else NAME_PATTERN
    return bool(pattern.match(name))


def validate_amount(amount: str | None) -> bool:
    """Amounts are decimal strings: digits with at most two decimal places."""
    if not isinstance(amount, str):
        return False
    return bool(AMOUNT_PATTERN.match(amount))


def to_decimal(amount: str | None) -> Decimal | None:
    """Decimal value of a validated amount string, or None."""
    if not validate_amount(amount):
        return None
    try:
        return Decimal(amount)
    except InvalidOperation:
        return None


def validate_tin(tin: str | None) -> bool:
    """TIN is optional; when present it is exactly 12 digits."""
    if not tin:
        return True
    return bool(re.match(r"^\d{12}$", tin))


def validate_postal_code(code: str | None) -> bool:
    if not code:
        return False
    return bool(re.match(r"^\d{4}$", code))


def parse_iso_date(value: str | None) -> date | None:
    """Parse a YYYY-MM-DD string (a trailing time part is ignored). Non-strings are None."""
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def age_on(birth_date: date, today: date) -> int:
    """Age in completed years by calendar day, not a 365-day approximation."""
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def mask_mobile(mobile: str) -> str:
    """01712345678 -> 0171******8"""
    if len(mobile) < 11:
        return mobile
    return mobile[:4] + "******" + mobile[10:]
