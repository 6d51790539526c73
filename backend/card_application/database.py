"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from card_application.config import get_settings

settings = get_settings()


def ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite URL."""
    if not url.startswith("sqlite:///") or url.endswith(":memory:"):
        return
    directory = os.path.dirname(url.replace("sqlite:///", "", 1))
    if directory:
        os.makedirs(directory, exist_ok=True)


def engine_kwargs(url: str) -> dict:
    """SQLite needs cross-thread access; in-memory SQLite needs one shared connection."""
    if not url.startswith("sqlite"):
        return {}
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


ensure_sqlite_dir(settings.DATABASE_URL)

engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG, **engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Called once at application startup."""
    from card_application.models import session as _session_model  # noqa: F401
    from card_application.models import draft as _draft_model      # noqa: F401
    from card_application.models import otp as _otp_model          # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all tables. Used by the test suite."""
    Base.metadata.drop_all(bind=engine)
