"""Authenticated Gmail API client (read-only)

Wraps google-api-python-client for the three reads the dashboard needs:
recent message summaries, recent message ids, and a single message rendered
for viewing. Credentials come from the encrypted token store and are
refreshed (and persisted) when they have expired.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from inbox_helper.config import (
    GMAIL_HYDRATE_WORKERS,
    GMAIL_MAX_RESULTS_CAP,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URI,
    NO_SUBJECT_TEXT,
    THREAD_FETCH_LIMIT,
)
from inbox_helper.gmail.parser import (
    decode_base64url,
    extract_snippet,
    header_value,
    iter_body_parts,
    merge_details,
    parse_raw_message,
    plain_text_to_html,
    sanitize_message_html,
    split_bodies,
    summary_from_listing,
)
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event, time_block
from inbox_helper.storage.models import GoogleOAuthToken, MessageDetail, ThreadSummary
from inbox_helper.storage.token_repository import TokenRepository
from inbox_helper.utils.redaction import redact, redact_subject

logger = get_logger(__name__)

NO_CONTENT_TEXT = "(No content available)"


class GmailAuthError(Exception):
    """Gmail rejected the stored credentials (401/403 or failed refresh)."""


class GmailFetchError(Exception):
    """Any other Gmail API failure."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def build_credentials(token: GoogleOAuthToken) -> Credentials:
    expiry = None
    if token.expires_at:
        # google-auth compares against naive UTC datetimes
        expiry = datetime.fromtimestamp(token.expires_at / 1000, UTC).replace(tzinfo=None)
    return Credentials(
        token=token.access_token,
        refresh_token=token.refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        scopes=token.scope.split() if token.scope else None,
        expiry=expiry,
    )


def token_from_credentials(credentials: Credentials) -> GoogleOAuthToken:
    expires_at = None
    if credentials.expiry is not None:
        expires_at = int(credentials.expiry.replace(tzinfo=UTC).timestamp() * 1000)
    return GoogleOAuthToken(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        expires_at=expires_at,
        scope=" ".join(credentials.scopes) if credentials.scopes else None,
        token_type="Bearer",
    )


class GmailClient:
    """
    Read-only Gmail access for one user.

    googleapiclient services are not thread-safe, so each worker thread
    builds its own service over the shared credentials.
    """

    def __init__(
        self,
        user_id: str,
        token: GoogleOAuthToken,
        token_store: TokenRepository | None = None,
    ) -> None:
        self.user_id = user_id
        self.credentials = build_credentials(token)
        self.token_store = token_store
        self._local = threading.local()
        self._refresh_lock = threading.Lock()

    def _ensure_fresh(self) -> None:
        with self._refresh_lock:
            if not self.credentials.expired or not self.credentials.refresh_token:
                return
            if not (GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET):
                raise GmailAuthError("Access token expired and no OAuth client is configured")
            try:
                self.credentials.refresh(Request())
            except RefreshError as e:
                counter("gmail.refresh.failed")
                log_event("gmail.refresh.failed", user_id=redact(self.user_id))
                raise GmailAuthError("Failed to refresh Gmail credentials") from e

            counter("gmail.refresh.success")
            if self.token_store is not None:
                self.token_store.save_token(self.user_id, token_from_credentials(self.credentials))

    @property
    def service(self) -> Any:
        service = getattr(self._local, "service", None)
        if service is None:
            self._ensure_fresh()
            service = build("gmail", "v1", credentials=self.credentials, cache_discovery=False)
            self._local.service = service
        return service

    def _translate(self, error: HttpError, action: str) -> Exception:
        status = error.resp.status
        log_event(f"gmail.{action}.error", status=status, user_id=redact(self.user_id))
        counter(f"gmail.{action}.error")
        if status in (401, 403):
            return GmailAuthError(f"Gmail rejected credentials: {status}")
        return GmailFetchError(f"Failed to fetch Gmail messages: {status}", status=status)

    def _list(self, limit: int, fields: str) -> list[dict[str, Any]]:
        max_results = min(GMAIL_MAX_RESULTS_CAP, max(1, limit))
        try:
            response = (
                self.service.users()
                .messages()
                .list(userId="me", maxResults=max_results, fields=fields)
                .execute()
            )
        except HttpError as e:
            raise self._translate(e, "list") from e
        return response.get("messages", []) or []

    def _get_full(self, message_id: str) -> dict[str, Any] | None:
        """format=full message; None when this one message cannot be read."""
        try:
            return (
                self.service.users()
                .messages()
                .get(userId="me", id=message_id, format="full")
                .execute()
            )
        except HttpError as e:
            translated = self._translate(e, "get")
            if isinstance(translated, GmailAuthError):
                raise translated from e
            logger.warning("Skipping details for message %s: %s", redact(message_id), e)
            return None
        except (TransportError, OSError) as e:
            counter("gmail.get.transport_error")
            logger.warning("Skipping details for message %s: %s", redact(message_id), e)
            return None

    def list_recent_messages(self, limit: int = THREAD_FETCH_LIMIT) -> list[ThreadSummary]:
        """
        Newest messages as ThreadSummary, hydrated with subject, sender and body preview.

        Raises:
            GmailAuthError: On 401/403 or failed refresh
            GmailFetchError: On any other list failure
        """
        with time_block("gmail.list_recent.latency"):
            listing = [
                summary
                for item in self._list(limit, "messages(id,snippet,internalDate)")
                if (summary := summary_from_listing(item)) is not None
            ]
            if not listing:
                return []

            workers = min(GMAIL_HYDRATE_WORKERS, len(listing))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gmail") as pool:
                details = list(pool.map(self._get_full, [s.id for s in listing]))

        hydrated = [merge_details(summary, detail) for summary, detail in zip(listing, details)]
        counter("gmail.messages_listed", len(hydrated))
        log_event(
            "gmail.list_recent",
            user_id=redact(self.user_id),
            count=len(hydrated),
            missing_details=sum(1 for d in details if d is None),
        )
        return hydrated

    def list_recent_message_ids(self, limit: int = THREAD_FETCH_LIMIT) -> list[str]:
        return [item["id"] for item in self._list(limit, "messages(id)") if item.get("id")]

    def _attachment_data(self, message_id: str, attachment_id: str) -> str:
        try:
            response = (
                self.service.users()
                .messages()
                .attachments()
                .get(userId="me", messageId=message_id, id=attachment_id)
                .execute()
            )
        except HttpError as e:
            logger.warning("Failed to fetch attachment body for %s: %s", redact(message_id), e)
            return ""
        data = response.get("data")
        return decode_base64url(data) if data else ""

    def _raw_bodies(self, message_id: str) -> tuple[str, str, str]:
        try:
            response = (
                self.service.users()
                .messages()
                .get(userId="me", id=message_id, format="raw")
                .execute()
            )
        except HttpError as e:
            raise self._translate(e, "get_raw") from e
        raw = response.get("raw") or ""
        html_body, text_body = parse_raw_message(raw)
        return html_body, text_body, decode_base64url(raw) if raw else ""

    def fetch_message_detail(self, message_id: str) -> MessageDetail:
        """
        One message rendered for the viewer.

        HTML bodies are sanitized; plain text is escaped into <pre>. When the
        structured payload has no body at all, the raw RFC 822 source is parsed.
        """
        try:
            message = (
                self.service.users()
                .messages()
                .get(userId="me", id=message_id, format="full")
                .execute()
            )
        except HttpError as e:
            raise self._translate(e, "detail") from e

        payload = message.get("payload")
        decoded = []
        for part in iter_body_parts(payload):
            if part.data:
                body = decode_base64url(part.data)
            elif part.attachment_id:
                body = self._attachment_data(message_id, part.attachment_id)
            else:
                body = ""
            decoded.append((part, body))
        plain, rich = split_bodies(decoded)

        full_html = "\n".join(rich).strip()
        full_text = "\n".join(plain).strip()

        if not full_html and not full_text:
            counter("gmail.detail.raw_fallback")
            raw_html, raw_text, raw_source = self._raw_bodies(message_id)
            full_html = raw_html
            full_text = raw_text or ("" if raw_html else raw_source.strip())

        if full_html:
            rendered = sanitize_message_html(full_html)
        else:
            rendered = plain_text_to_html(full_text or extract_snippet(message) or NO_CONTENT_TEXT)

        subject = header_value(payload, "Subject") or NO_SUBJECT_TEXT
        log_event(
            "gmail.detail.fetched",
            message_id=redact(message_id),
            subject=redact_subject(subject),
        )
        return MessageDetail(
            id=message_id,
            subject=subject,
            from_address=header_value(payload, "From") or "",
            to=header_value(payload, "To") or "",
            date=header_value(payload, "Date") or "",
            html=rendered or plain_text_to_html(NO_CONTENT_TEXT),
        )


def get_gmail_client(
    user_id: str, token: GoogleOAuthToken, token_store: TokenRepository | None = None
) -> GmailClient:
    return GmailClient(user_id, token, token_store=token_store)
