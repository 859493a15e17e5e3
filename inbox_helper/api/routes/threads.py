"""Inbox refresh and reclassification endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from inbox_helper.api.dependencies import (
    GmailClientFactory,
    get_bucket_classifier,
    get_cache_repository,
    get_gmail_factory,
    get_inbox_repository,
    get_token_repository,
    read_stored_token,
)
from inbox_helper.api.errors import GMAIL_AUTH_EXPIRED, ApiError, google_auth_required
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.api.responses import inbox_payload
from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.classification.pipeline import classify_unseen_threads
from inbox_helper.config import THREAD_FETCH_LIMIT
from inbox_helper.gmail.client import GmailAuthError, GmailFetchError
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage.classification_cache import ClassificationCacheRepository
from inbox_helper.storage.inbox_repository import InboxRepository
from inbox_helper.storage.token_repository import TokenRepository
from inbox_helper.utils.error_sanitizer import get_safe_error_detail
from inbox_helper.utils.redaction import redact

router = APIRouter(prefix="/api", tags=["threads"])
logger = get_logger(__name__)


@router.get("/threads", dependencies=[Depends(RouteRateLimit("threads_get"))])
def get_threads(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenRepository = Depends(get_token_repository),
    inbox: InboxRepository = Depends(get_inbox_repository),
    cache: ClassificationCacheRepository = Depends(get_cache_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
    gmail_factory: GmailClientFactory = Depends(get_gmail_factory),
) -> dict[str, Any]:
    """
    Pull the newest messages from Gmail, classify the ones not seen before,
    store the window and return it grouped by bucket.
    """
    try:
        token = read_stored_token(tokens, user_id)
        if token is None:
            raise google_auth_required()
        threads = gmail_factory(user_id, token, tokens).list_recent_messages(THREAD_FETCH_LIMIT)
    except GmailAuthError as e:
        log_event("api.threads.gmail_auth_expired", user_id=redact(user_id))
        raise google_auth_required(GMAIL_AUTH_EXPIRED) from e
    except GmailFetchError as e:
        raise ApiError(500, str(e)) from e

    try:
        _, buckets = inbox.get_threads_and_buckets(user_id)
        classifications = classify_unseen_threads(user_id, threads, buckets, classifier, cache)
        inbox.save_threads_and_classifications(user_id, threads, classifications)
        view = inbox.get_inbox(user_id)
    except Exception as e:
        log_event("api.threads.error", error=type(e).__name__, user_id=redact(user_id))
        raise ApiError(
            500, get_safe_error_detail(e, 500, context="Failed to load threads")
        ) from e

    log_event("api.threads.loaded", user_id=redact(user_id), threads=len(threads))
    return {"limit": THREAD_FETCH_LIMIT, **inbox_payload(view)}


@router.post("/classify", dependencies=[Depends(RouteRateLimit("classify_post"))])
def classify_stored_threads(
    user_id: str = Depends(get_current_user_id),
    inbox: InboxRepository = Depends(get_inbox_repository),
    cache: ClassificationCacheRepository = Depends(get_cache_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
) -> dict[str, Any]:
    """Reclassify stored threads (cache-aware) without contacting Gmail."""
    try:
        threads, buckets = inbox.get_threads_and_buckets(user_id)
        classifications = classify_unseen_threads(user_id, threads, buckets, classifier, cache)
        inbox.save_classifications(user_id, classifications)
        view = inbox.get_inbox(user_id)
    except Exception as e:
        log_event("api.classify.error", error=type(e).__name__, user_id=redact(user_id))
        raise ApiError(
            500, get_safe_error_detail(e, 500, context="Failed to classify threads")
        ) from e

    log_event("api.classify.completed", user_id=redact(user_id), threads=len(threads))
    return inbox_payload(view)
