"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
Shared by the draft backend and the client-side wizard core.
"""
from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Core ---
    APP_NAME: str = "MTB Credit Card Application API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database (draft backend) ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'card_application.db'}"

    # --- Security ---
    SECRET_KEY: str = "card-application-secret-key-change-in-production"
    CORS_ORIGINS: list[str] = ["*"]

    # --- Session ---
    SESSION_TTL_MINUTES: int = 30
    SESSION_WARNING_SECONDS: int = 120

    # --- OTP ---
    OTP_LENGTH: int = 6
    OTP_MAX_ATTEMPTS: int = 5
    OTP_EXPIRY_SECONDS: int = 300
    OTP_LOCK_SECONDS: int = 30

    # --- Rate limits (requests per window seconds) ---
    DRAFT_RATE_LIMIT: int = 120
    DRAFT_RATE_WINDOW: int = 60
    SUBMISSION_RATE_LIMIT: int = 3
    SUBMISSION_RATE_WINDOW: int = 60
    OTP_RATE_LIMIT: int = 5
    OTP_RATE_WINDOW: int = 60

    # --- Client-side wizard core ---
    LOCAL_DRAFT_DB_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'local_drafts.db'}"
    DRAFT_STORAGE_KEY: str = "mtb_application_draft"
    REMOTE_API_BASE_URL: str = "http://localhost:8000"
    REMOTE_TIMEOUT_SECONDS: float = 15.0
    REMOTE_SAVE_MAX_RETRIES: int = 3
    REMOTE_SAVE_BACKOFF_SECONDS: float = 0.5

    # --- Business rules ---
    MIN_APPLICANT_AGE: int = 18
    MIN_CREDIT_LIMIT: str = "50000"
    REFERENCE_PREFIX: str = "MTB-CC"

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
