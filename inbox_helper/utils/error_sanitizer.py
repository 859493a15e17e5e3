"""
Error message sanitization for HTTP responses.

Exceptions raised deep in Gmail, SQLite or LLM code can carry file paths,
SQL fragments or credentials. Only vetted text reaches clients.
"""

from __future__ import annotations

import re

from inbox_helper.observability.logging import get_logger

logger = get_logger(__name__)

SENSITIVE_PATTERNS = [
    # File paths
    r"/[^\s]+\.py",
    r"[A-Za-z]:\\[^\s]+",
    # Stack traces
    r"Traceback \(most recent call last\)",
    r"File \".*\"",
    # Database errors
    r"sqlite3?\.",
    r"UNIQUE constraint",
    r"no such table",
    r"no such column",
    # Secrets
    r"[A-Za-z0-9_-]{24,}",
    r"Bearer [A-Za-z0-9._-]+",
    r"sk-[A-Za-z0-9]+",
    r"xai-[A-Za-z0-9]+",
    # Internal module names
    r"inbox_helper\.[a-z_.]+",
]

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    429: "Too many requests. Please try again later.",
    500: "An internal error occurred. Please try again later.",
    503: "Service temporarily unavailable.",
}


def sanitize_error_message(message: str, status_code: int = 500) -> str:
    """
    Return message if it is short and free of sensitive patterns, else a generic one.

    Only client errors (4xx) may echo the original text.
    """
    generic = GENERIC_MESSAGES.get(status_code, "An error occurred.")
    if not message:
        return generic

    for pattern in SENSITIVE_PATTERNS:
        if re.search(pattern, message, re.IGNORECASE):
            logger.warning("Sanitized sensitive error pattern: %s", pattern)
            return generic

    if (
        400 <= status_code < 500
        and len(message) < 120
        and not any(c in message for c in "{}[]\n")
    ):
        return message

    return generic


def get_safe_error_detail(
    error: Exception,
    status_code: int = 500,
    context: str | None = None,
) -> str:
    """
    Log the full error and return text safe for the response body.

    For 5xx errors the context string, when given, replaces the exception text.
    """
    logger.error("Error (status=%d): %s - %s", status_code, type(error).__name__, error)

    if context and status_code >= 500:
        return context
    return sanitize_error_message(str(error), status_code)
