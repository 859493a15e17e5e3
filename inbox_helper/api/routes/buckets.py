"""Bucket management endpoints.

Any change to the bucket set reclassifies every stored thread, since the
choice of bucket for a thread depends on all the alternatives.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from inbox_helper.api.dependencies import (
    get_bucket_classifier,
    get_bucket_repository,
    get_cache_repository,
    get_inbox_repository,
)
from inbox_helper.api.errors import ApiError
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.api.models import BucketCreateRequest, BucketDeleteRequest, BucketUpdateRequest
from inbox_helper.api.responses import inbox_payload
from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.classification.pipeline import classify_all_threads
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage.bucket_repository import (
    BucketNotFoundError,
    BucketRepository,
    LastBucketError,
)
from inbox_helper.storage.classification_cache import ClassificationCacheRepository
from inbox_helper.storage.inbox_repository import InboxRepository
from inbox_helper.utils.error_sanitizer import get_safe_error_detail
from inbox_helper.utils.redaction import redact

router = APIRouter(
    prefix="/api",
    tags=["buckets"],
    dependencies=[Depends(RouteRateLimit("buckets_post"))],
)
logger = get_logger(__name__)


def _reclassify(
    user_id: str,
    inbox: InboxRepository,
    cache: ClassificationCacheRepository,
    classifier: BucketClassifier,
) -> dict[str, Any]:
    try:
        threads, buckets = inbox.get_threads_and_buckets(user_id)
        classifications = classify_all_threads(user_id, threads, buckets, classifier, cache)
        inbox.save_threads_and_classifications(user_id, threads, classifications)
        return inbox_payload(inbox.get_inbox(user_id))
    except Exception as e:
        log_event("api.buckets.reclassify_error", error=type(e).__name__, user_id=redact(user_id))
        raise ApiError(
            500, get_safe_error_detail(e, 500, context="Failed to update categories")
        ) from e


@router.post("/buckets")
def create_bucket(
    request: BucketCreateRequest,
    user_id: str = Depends(get_current_user_id),
    buckets: BucketRepository = Depends(get_bucket_repository),
    inbox: InboxRepository = Depends(get_inbox_repository),
    cache: ClassificationCacheRepository = Depends(get_cache_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
) -> dict[str, Any]:
    buckets.add_bucket(user_id, request.name, request.description)
    return _reclassify(user_id, inbox, cache, classifier)


@router.put("/buckets")
def update_bucket(
    request: BucketUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    buckets: BucketRepository = Depends(get_bucket_repository),
    inbox: InboxRepository = Depends(get_inbox_repository),
    cache: ClassificationCacheRepository = Depends(get_cache_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
) -> dict[str, Any]:
    try:
        buckets.update_bucket(user_id, request.id, request.name, request.description)
    except BucketNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, str(e)) from e
    return _reclassify(user_id, inbox, cache, classifier)


@router.delete("/buckets")
def delete_bucket(
    request: BucketDeleteRequest,
    user_id: str = Depends(get_current_user_id),
    buckets: BucketRepository = Depends(get_bucket_repository),
    inbox: InboxRepository = Depends(get_inbox_repository),
    cache: ClassificationCacheRepository = Depends(get_cache_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
) -> dict[str, Any]:
    try:
        buckets.delete_bucket(user_id, request.id)
    except BucketNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, str(e)) from e
    except LastBucketError as e:
        raise ApiError(status.HTTP_400_BAD_REQUEST, str(e)) from e
    return _reclassify(user_id, inbox, cache, classifier)
