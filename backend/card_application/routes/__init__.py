from card_application.routes.session import router as session_router
from card_application.routes.drafts import router as drafts_router
from card_application.routes.otp import router as otp_router
from card_application.routes.submission import router as submission_router

__all__ = ["session_router", "drafts_router", "otp_router", "submission_router"]
