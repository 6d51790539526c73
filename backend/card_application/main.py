"""
MTB Credit Card Application — FastAPI entry point.

Serves the Remote Draft Service consumed by the wizard core: sessions,
per-step draft saves, OTP verification and final submission.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from card_application.config import get_settings
from card_application.database import SessionLocal, init_db
from card_application.routes import session_router, drafts_router, otp_router, submission_router
from card_application.utils.logger import get_logger, setup_logging

settings = get_settings()
logger = get_logger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info(
        f"{settings.APP_NAME} v{settings.APP_VERSION} ready "
        f"(session ttl {settings.SESSION_TTL_MINUTES} min, debug={settings.DEBUG})"
    )
    yield
    logger.info("Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Draft, session, OTP and submission API for the multi-step credit card "
        "application wizard. Drafts are versioned per step and survive interruption."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def time_api_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.1f}"
    if request.url.path.startswith("/api"):
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
    return response


for router in (session_router, drafts_router, otp_router, submission_router):
    app.include_router(router)


def database_reachable() -> bool:
    with SessionLocal() as db:
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning(f"Health check database error: {exc}")
            return False
    return True


@app.get("/health", tags=["Health"])
def health():
    """Liveness plus database reachability."""
    db_ok = database_reachable()
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
        "version": settings.APP_VERSION,
    }
