"""Deterministic fallbacks used when no LLM answer is available."""

from __future__ import annotations

import re

from inbox_helper.storage.models import (
    BucketDefinition,
    ThreadClassification,
    ThreadSummary,
    recency_key,
)

NEWSLETTER_MARKERS = ("unsubscribe", "digest")
URGENCY_MARKERS = ("urgent", "asap", "action required")
LOW_VALUE_MARKERS = ("receipt", "notification")

_TOKEN = re.compile(r"[\w']+")


class NoBucketsError(ValueError):
    """Classification was requested with an empty bucket list."""


def _find_bucket(buckets: list[BucketDefinition], fragment: str) -> BucketDefinition | None:
    return next((b for b in buckets if fragment in b.name.lower()), None)


def keyword_heuristic(
    thread: ThreadSummary, buckets: list[BucketDefinition]
) -> ThreadClassification:
    """Rules are checked in order: newsletter, urgency, low value, then default."""
    text = f"{thread.subject} {thread.snippet}".lower()

    newsletter = _find_bucket(buckets, "newsletter")
    if newsletter and any(marker in text for marker in NEWSLETTER_MARKERS):
        return ThreadClassification(
            thread_id=thread.id,
            bucket_id=newsletter.id,
            confidence=0.95,
            reason="Newsletter markers detected",
        )

    important = _find_bucket(buckets, "important")
    if important and any(marker in text for marker in URGENCY_MARKERS):
        return ThreadClassification(
            thread_id=thread.id,
            bucket_id=important.id,
            confidence=0.9,
            reason="Urgency markers detected",
        )

    archive = _find_bucket(buckets, "archive")
    if archive and any(marker in text for marker in LOW_VALUE_MARKERS):
        return ThreadClassification(
            thread_id=thread.id,
            bucket_id=archive.id,
            confidence=0.8,
            reason="Low value signal detected",
        )

    fallback = _find_bucket(buckets, "wait") or (buckets[0] if buckets else None)
    if fallback is None:
        raise NoBucketsError("No fallback bucket available")
    return ThreadClassification(
        thread_id=thread.id,
        bucket_id=fallback.id,
        confidence=0.6,
        reason="Default fallback",
    )


def tokenize(text: str) -> list[str]:
    return [token for token in _TOKEN.findall(text.lower()) if len(token) >= 2]


def keyword_search(query: str, threads: list[ThreadSummary], limit: int) -> list[str]:
    """
    Rank threads by query term hits: subject 3, sender 2, snippet 1.

    Threads with no hits are excluded; ties go to the newer thread.
    """
    terms = set(tokenize(query))
    if not terms:
        return []

    scored: list[tuple[int, ThreadSummary]] = []
    for thread in threads:
        subject = set(tokenize(thread.subject))
        sender = set(tokenize(thread.sender or ""))
        snippet = set(tokenize(thread.snippet))
        score = sum(
            3 * (term in subject) + 2 * (term in sender) + (term in snippet) for term in terms
        )
        if score > 0:
            scored.append((score, thread))

    scored.sort(key=lambda item: (-item[0], recency_key(item[1])))
    return [thread.id for _, thread in scored[:limit]]
