"""
Cache-aware classification.

The cache is an optimization: a failed read is a miss and a failed write is
dropped, so a cache outage never blocks serving an inbox.
"""

from __future__ import annotations

import sqlite3

from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.classification.grouping import fallback_bucket
from inbox_helper.config import MISSING_CLASSIFICATION_CONFIDENCE, MISSING_CLASSIFICATION_REASON
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.storage.classification_cache import ClassificationCacheRepository
from inbox_helper.storage.models import BucketDefinition, ThreadClassification, ThreadSummary

logger = get_logger(__name__)

# sqlite3.Error for database faults, RuntimeError for pool exhaustion,
# FileNotFoundError when the database has not been initialized
CACHE_ERRORS = (sqlite3.Error, RuntimeError, FileNotFoundError)


def _read_cache(
    cache: ClassificationCacheRepository, user_id: str, email_ids: list[str]
) -> dict[str, ThreadClassification]:
    try:
        return cache.get_cached(user_id, email_ids)
    except CACHE_ERRORS as e:
        logger.warning("Classification cache read failed, treating as empty: %s", e)
        counter("cache.read_failed")
        return {}


def _write_cache(
    cache: ClassificationCacheRepository,
    user_id: str,
    classifications: list[ThreadClassification],
) -> None:
    if not classifications:
        return
    try:
        cache.upsert(user_id, classifications)
    except CACHE_ERRORS as e:
        logger.warning("Classification cache write failed, continuing: %s", e)
        counter("cache.write_failed")


def _in_input_order(
    threads: list[ThreadSummary],
    by_id: dict[str, ThreadClassification],
    buckets: list[BucketDefinition],
) -> list[ThreadClassification]:
    fallback = fallback_bucket(buckets)
    results = []
    for thread in threads:
        classification = by_id.get(thread.id)
        if classification is None:
            if fallback is None:
                continue
            counter("pipeline.missing_classification")
            classification = ThreadClassification(
                thread_id=thread.id,
                bucket_id=fallback.id,
                confidence=MISSING_CLASSIFICATION_CONFIDENCE,
                reason=MISSING_CLASSIFICATION_REASON,
            )
        results.append(classification)
    return results


def classify_unseen_threads(
    user_id: str,
    threads: list[ThreadSummary],
    buckets: list[BucketDefinition],
    classifier: BucketClassifier,
    cache: ClassificationCacheRepository | None = None,
) -> list[ThreadClassification]:
    """
    Classify only threads with no valid cached classification.

    Cached entries whose bucket no longer exists count as unseen. New results
    are written back to the cache. Returns one classification per thread, in
    input order.
    """
    cache = cache or ClassificationCacheRepository()
    email_ids = list(dict.fromkeys(thread.id for thread in threads))
    valid_bucket_ids = {bucket.id for bucket in buckets}

    cached = {
        email_id: classification
        for email_id, classification in _read_cache(cache, user_id, email_ids).items()
        if classification.bucket_id in valid_bucket_ids
    }

    seen_ids: set[str] = set()
    unseen: list[ThreadSummary] = []
    for thread in threads:
        if thread.id in cached or thread.id in seen_ids:
            continue
        seen_ids.add(thread.id)
        unseen.append(thread)

    fresh = classifier.classify_threads(unseen, buckets) if unseen else []
    _write_cache(cache, user_id, fresh)

    by_id = dict(cached)
    by_id.update({c.thread_id: c for c in fresh})

    log_event(
        "pipeline.classify_unseen",
        total=len(email_ids),
        cached=len(cached),
        classified=len(fresh),
    )
    return _in_input_order(threads, by_id, buckets)


def classify_all_threads(
    user_id: str,
    threads: list[ThreadSummary],
    buckets: list[BucketDefinition],
    classifier: BucketClassifier,
    cache: ClassificationCacheRepository | None = None,
) -> list[ThreadClassification]:
    """Classify every thread regardless of cache and refresh the cache with the results."""
    cache = cache or ClassificationCacheRepository()
    unique = list({thread.id: thread for thread in threads}.values())

    fresh = classifier.classify_threads(unique, buckets) if unique else []
    _write_cache(cache, user_id, fresh)

    log_event("pipeline.classify_all", total=len(unique))
    return _in_input_order(threads, {c.thread_id: c for c in fresh}, buckets)
