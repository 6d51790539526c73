"""
Notification Service — SMS delivery simulation for one-time passwords.
"""
import time
from typing import Dict, Any

from card_application.utils.logger import get_logger
from card_application.utils.validators import mask_mobile

logger = get_logger(__name__)


class NotificationService:
    @staticmethod
    def send_sms(phone: str, message: str) -> Dict[str, Any]:
        """
        Simulates sending an SMS via a gateway provider.
        """
        logger.info(f"[SMS] Sending to {mask_mobile(phone)}: {message}")
        return {
            "success": True,
            "provider": "MockSMSGateway",
            "sid": f"SM{int(time.time())}Y",
            "status": "sent",
        }

    @staticmethod
    def send_otp(phone: str, code: str, expires_in_seconds: int) -> Dict[str, Any]:
        minutes = max(1, expires_in_seconds // 60)
        return NotificationService.send_sms(
            phone, f"Your MTB credit card application code is {code}. It expires in {minutes} minutes.",
        )
