"""
Pytest configuration for Inbox Helper tests

Every test runs against a throwaway SQLite file and a generated encryption
key; no Google or LLM credentials are read from the environment.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from cryptography.fernet import Fernet

_TEST_DIR = Path(tempfile.mkdtemp(prefix="inbox_helper_tests_"))

os.environ["INBOX_HELPER_DB_PATH"] = str(_TEST_DIR / "inbox_helper_test.db")
os.environ["INBOX_HELPER_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["INBOX_HELPER_ENV"] = "test"
os.environ["INBOX_HELPER_AUTH_REQUIRED"] = "false"
os.environ["INBOX_HELPER_LOG_LEVEL"] = "WARNING"
for _key in ("XAI_API_KEY", "OPENAI_API_KEY", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
    os.environ.pop(_key, None)

import pytest  # noqa: E402

from inbox_helper.api.middleware.user_auth import clear_token_cache  # noqa: E402
from inbox_helper.infrastructure.database import db_transaction, init_database  # noqa: E402
from inbox_helper.infrastructure.database_schema import REQUIRED_TABLES  # noqa: E402
from inbox_helper.observability.telemetry import reset_metrics  # noqa: E402


@pytest.fixture(autouse=True)
def clean_state():
    """Empty every table and reset in-memory metrics before each test"""
    init_database()
    with db_transaction() as conn:
        for table in REQUIRED_TABLES:
            conn.execute(f"DELETE FROM {table}")  # noqa: S608
    reset_metrics()
    clear_token_cache()
    yield
