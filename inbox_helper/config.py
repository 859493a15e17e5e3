"""Centralized configuration for the Inbox Helper backend.

Re-exports everything from inbox_helper.infrastructure.settings, then adds typed
constants for database, LLM, inbox limits, rate-limiting, and bucket defaults.
Environment variable overrides use safe defaults so the app starts without
extra env configuration.
"""

from __future__ import annotations

import os

from inbox_helper.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("INBOX_HELPER_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("INBOX_HELPER_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("INBOX_HELPER_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("INBOX_HELPER_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("INBOX_HELPER_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("INBOX_HELPER_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("INBOX_HELPER_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("INBOX_HELPER_DB_RETRY_JITTER", "0.1"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("INBOX_HELPER_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("INBOX_HELPER_LLM_MAX_RETRIES", "3"))
LLM_MAX_WORKERS: int = int(os.getenv("INBOX_HELPER_LLM_MAX_WORKERS", "4"))
LLM_BATCH_SIZE: int = int(os.getenv("INBOX_HELPER_LLM_BATCH_SIZE", "20"))
LLM_CLASSIFY_DEADLINE_SECONDS: float = float(
    os.getenv("INBOX_HELPER_LLM_CLASSIFY_DEADLINE", "90")
)

# --- Inbox ---
THREAD_FETCH_LIMIT: int = 200
MAX_STORED_THREADS: int = 200
MAX_KNOWN_IDS: int = 200
SEARCH_CANDIDATE_LIMIT: int = 200
SEARCH_DEFAULT_LIMIT: int = 15
GMAIL_MAX_RESULTS_CAP: int = 500
GMAIL_HYDRATE_WORKERS: int = int(os.getenv("INBOX_HELPER_GMAIL_WORKERS", "12"))
BODY_PREVIEW_CHARS: int = 200
NO_PREVIEW_TEXT: str = "(No preview available)"
NO_SUBJECT_TEXT: str = "(No Subject)"

# --- Classification fallbacks ---
MISSING_CLASSIFICATION_CONFIDENCE: float = 0.1
MISSING_CLASSIFICATION_REASON: str = "Fallback assignment due to missing classification."
FALLBACK_BUCKET_NAME: str = "Can Wait"

# --- Rate Limiting (route key -> requests per window) ---
RATE_LIMIT_WINDOW_MS: int = 60_000
RATE_LIMITS: dict[str, int] = {
    "threads_get": 30,
    "classify_post": 20,
    "chat_search_post": 30,
    "buckets_post": 15,
    "message_detail_post": 60,
    "messages_check_new_post": 90,
    "logout_post": 20,
}

# --- Buckets ---
DEFAULT_BUCKETS: list[dict[str, str]] = [
    {"name": "Important", "description": "Actionable or urgent conversations."},
    {"name": "Can Wait", "description": "Useful updates that are not urgent."},
    {"name": "Auto-Archive", "description": "Low-value notifications that can be archived."},
    {"name": "Newsletter", "description": "Subscriptions, digests, and marketing content."},
]
BUCKET_NAME_MIN: int = 2
BUCKET_NAME_MAX: int = 60
BUCKET_DESCRIPTION_MAX: int = 240
CHAT_QUERY_MIN: int = 2
CHAT_QUERY_MAX: int = 500
CHAT_LIMIT_MAX: int = 50


def is_production() -> bool:
    return ENV == "production"  # noqa: F405
