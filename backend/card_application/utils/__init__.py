from card_application.utils.hashing import generate_otp, hash_otp, verify_otp
from card_application.utils.validators import validate_nid, validate_bd_mobile, validate_amount, mask_mobile

__all__ = [
    "generate_otp", "hash_otp", "verify_otp",
    "validate_nid", "validate_bd_mobile", "validate_amount", "mask_mobile",
]
