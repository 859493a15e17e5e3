"""
Redaction helpers for telemetry.

Message ids, subjects and search queries are user data; logs carry a stable
hash (plus a short prefix for subjects) so events can be correlated.
"""

from __future__ import annotations

from hashlib import sha256


def redact(value: str | None) -> str:
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_subject(subject: str | None, max_length: int = 30) -> str:
    """
    "Your Amazon order #123-456 has shipped" ->
    "Your Amazon order #123-456 h... (h:7a8b9c)"
    """
    if not subject:
        return "(no subject)"

    visible = subject[:max_length] + "..." if len(subject) > max_length else subject
    digest = sha256(subject.encode("utf-8")).hexdigest()[:6]
    return f"{visible} (h:{digest})"
