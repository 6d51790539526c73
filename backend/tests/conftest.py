"""
Test configuration: in-memory databases and a throwaway log directory,
set before the package reads its settings.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCAL_DRAFT_DB_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="card-application-logs-")
os.environ["REMOTE_SAVE_BACKOFF_SECONDS"] = "0"

import pytest  # noqa: E402

from card_application.database import drop_db, init_db  # noqa: E402
from card_application.utils.rate_limiter import reset_rate_limits  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_database():
    """Every test starts with empty tables and rate-limit windows."""
    drop_db()
    init_db()
    reset_rate_limits()
    yield
