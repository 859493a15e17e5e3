"""
Gmail payload parsing.

Side-effect free helpers that turn Gmail API message resources into
ThreadSummary objects, and message bodies into display-safe HTML.
"""

from __future__ import annotations

import base64
import binascii
import html
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from email import message_from_bytes, policy
from typing import Any

from bs4 import BeautifulSoup

from inbox_helper.config import BODY_PREVIEW_CHARS, NO_PREVIEW_TEXT, NO_SUBJECT_TEXT
from inbox_helper.storage.models import ThreadSummary

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"
_DANGEROUS_TAGS = ["script", "style", "iframe", "object", "embed"]
_URL_ATTRIBUTES = ("href", "src")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class BodyPart:
    """A leaf body found while walking a payload; data is None when stored as an attachment."""

    mime_type: str
    data: str | None
    attachment_id: str | None
    is_leaf: bool


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64, tolerating missing padding and whitespace."""
    compact = _WHITESPACE.sub("", data)
    padding = "=" * (-len(compact) % 4)
    try:
        return base64.urlsafe_b64decode(compact + padding).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def decode_html_entities(value: str) -> str:
    return html.unescape(value)


def header_value(payload: dict[str, Any] | None, name: str) -> str | None:
    if not payload:
        return None
    name_lower = name.lower()
    for header in payload.get("headers") or []:
        if header.get("name", "").lower() == name_lower:
            value = (header.get("value") or "").strip()
            return value or None
    return None


def html_to_text(markup: str) -> str:
    """Visible text of an HTML fragment, whitespace-collapsed."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return normalize_whitespace(soup.get_text(separator=" "))


def iter_body_parts(part: dict[str, Any] | None) -> Iterator[BodyPart]:
    """Depth-first walk over a payload, yielding every part that carries a body."""
    if not part:
        return
    body = part.get("body") or {}
    children = part.get("parts") or []
    if body.get("data") or body.get("attachmentId"):
        yield BodyPart(
            mime_type=(part.get("mimeType") or "").lower(),
            data=body.get("data"),
            attachment_id=body.get("attachmentId"),
            is_leaf=not children,
        )
    for child in children:
        yield from iter_body_parts(child)


def split_bodies(parts: Iterable[tuple[BodyPart, str]]) -> tuple[list[str], list[str]]:
    """
    Sort decoded bodies into (plain, html).

    Leaves of an unknown type count as plain text.
    """
    plain: list[str] = []
    rich: list[str] = []
    for part, decoded in parts:
        if not decoded:
            continue
        if part.mime_type.startswith(_TEXT_HTML):
            rich.append(decoded)
        elif part.mime_type.startswith(_TEXT_PLAIN) or part.is_leaf:
            plain.append(decoded)
    return plain, rich


def extract_body_preview(message: dict[str, Any], limit: int = BODY_PREVIEW_CHARS) -> str | None:
    """First `limit` characters of the plain body, else of the HTML body's text."""
    inline = [
        (part, decode_base64url(part.data))
        for part in iter_body_parts(message.get("payload"))
        if part.data
    ]
    plain, rich = split_bodies(inline)

    combined_plain = normalize_whitespace(decode_html_entities(" ".join(plain)))
    if combined_plain:
        return combined_plain[:limit]

    combined_html = normalize_whitespace(" ".join(html_to_text(body) for body in rich))
    if combined_html:
        return combined_html[:limit]
    return None


def extract_snippet(message: dict[str, Any]) -> str | None:
    snippet = message.get("snippet")
    if not snippet:
        return None
    return normalize_whitespace(decode_html_entities(snippet)) or None


def extract_internal_date(message: dict[str, Any]) -> int | None:
    try:
        return int(message["internalDate"])
    except (KeyError, TypeError, ValueError):
        return None


def summary_from_listing(item: dict[str, Any]) -> ThreadSummary | None:
    """ThreadSummary from a messages.list entry (id, snippet, internalDate only)."""
    message_id = item.get("id")
    if not message_id:
        return None
    return ThreadSummary(
        id=message_id,
        subject=NO_SUBJECT_TEXT,
        snippet=extract_snippet(item) or "",
        received_at=extract_internal_date(item),
    )


def merge_details(summary: ThreadSummary, message: dict[str, Any] | None) -> ThreadSummary:
    """
    Overlay a format=full message onto a listing summary.

    Snippet precedence: body preview, Gmail snippet, listing snippet,
    "Subject: ...", then the no-preview placeholder.
    """
    details = message or {}
    payload = details.get("payload")

    subject = header_value(payload, "Subject") or summary.subject or NO_SUBJECT_TEXT
    snippet = (
        (extract_body_preview(details) if details else None)
        or extract_snippet(details)
        or summary.snippet.strip()
    )
    if not snippet:
        snippet = f"Subject: {subject}" if subject.strip() else NO_PREVIEW_TEXT

    received_at = extract_internal_date(details)
    return ThreadSummary(
        id=summary.id,
        subject=subject,
        snippet=snippet,
        sender=header_value(payload, "From") or summary.sender,
        received_at=received_at if received_at is not None else summary.received_at,
    )


def sanitize_message_html(markup: str) -> str:
    """
    Strip active content from an email body before it is rendered.

    Removes script/style/iframe/object/embed elements and on* handlers, and
    neutralizes javascript: URLs.
    """
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(_DANGEROUS_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith("on"):
                del tag.attrs[attr]
        for attr in _URL_ATTRIBUTES:
            value = tag.get(attr)
            if isinstance(value, str) and value.strip().lower().startswith("javascript:"):
                tag[attr] = "#"

    return str(soup).strip()


def plain_text_to_html(text: str) -> str:
    return f"<pre>{html.escape(text, quote=False)}</pre>"


def parse_raw_message(raw: str) -> tuple[str, str]:
    """
    Decode a format=raw message (RFC 822, base64url) into (html, text).

    The email package handles multipart structure and quoted-printable/base64
    transfer encodings.
    """
    compact = _WHITESPACE.sub("", raw)
    try:
        raw_bytes = base64.urlsafe_b64decode(compact + "=" * (-len(compact) % 4))
    except (binascii.Error, ValueError):
        return "", ""

    parsed = message_from_bytes(raw_bytes, policy=policy.default)
    html_parts: list[str] = []
    text_parts: list[str] = []
    for part in parsed.walk():
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in (_TEXT_HTML, _TEXT_PLAIN):
            continue
        try:
            content = part.get_content()
        except (LookupError, ValueError):
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")
        if content_type == _TEXT_HTML:
            html_parts.append(content)
        else:
            text_parts.append(content)

    return "\n".join(html_parts).strip(), "\n".join(text_parts).strip()
