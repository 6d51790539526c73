from card_application.services.session_service import SessionService
from card_application.services.draft_service import DraftService
from card_application.services.otp_service import OtpService
from card_application.services.submission_service import SubmissionService
from card_application.services.notification_service import NotificationService

__all__ = ["SessionService", "DraftService", "OtpService", "SubmissionService", "NotificationService"]
