from card_application.models.session import ApplicationSession
from card_application.models.draft import Draft, DraftStep
from card_application.models.otp import OtpChallenge

__all__ = ["ApplicationSession", "Draft", "DraftStep", "OtpChallenge"]
