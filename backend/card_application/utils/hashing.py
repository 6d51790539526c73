"""
Cryptographic Hashing Utilities — keyed hashing and code generation for OTPs.
"""
import hashlib
import hmac
import secrets

from card_application.config import get_settings


def generate_otp(length: int | None = None) -> str:
    """Numeric one-time code from a CSPRNG."""
    length = length or get_settings().OTP_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_otp(code: str, session_id: str, mobile_number: str) -> str:
    """HMAC-SHA256 of the code bound to its session and mobile number."""
    key = get_settings().SECRET_KEY.encode("utf-8")
    message = f"{session_id}:{mobile_number}:{code}".encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def verify_otp(code: str, session_id: str, mobile_number: str, expected_hash: str) -> bool:
    """Constant-time comparison against a stored hash."""
    return hmac.compare_digest(hash_otp(code, session_id, mobile_number), expected_hash)
