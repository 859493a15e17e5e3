"""Group classified threads under their buckets for the dashboard."""

from __future__ import annotations

from collections.abc import Iterable

from inbox_helper.config import FALLBACK_BUCKET_NAME
from inbox_helper.storage.models import (
    BucketDefinition,
    BucketedThread,
    BucketedThreads,
    InboxView,
    ThreadClassification,
    ThreadSummary,
    recency_key,
)


def fallback_bucket(buckets: list[BucketDefinition]) -> BucketDefinition | None:
    """The "Can Wait" bucket if the user still has it, otherwise the first bucket."""
    for bucket in buckets:
        if bucket.name == FALLBACK_BUCKET_NAME:
            return bucket
    return buckets[0] if buckets else None


def group_threads_by_bucket(
    threads: Iterable[ThreadSummary],
    classifications: Iterable[ThreadClassification],
    buckets: list[BucketDefinition],
) -> list[BucketedThreads]:
    """
    One group per bucket, in bucket order.

    Classifications pointing at an unknown thread or bucket are skipped.
    """
    thread_by_id = {thread.id: thread for thread in threads}
    groups = {bucket.id: BucketedThreads(bucket=bucket) for bucket in buckets}

    for classification in classifications:
        group = groups.get(classification.bucket_id)
        thread = thread_by_id.get(classification.thread_id)
        if group is None or thread is None:
            continue
        group.threads.append(
            BucketedThread(**thread.model_dump(), confidence=classification.confidence)
        )

    return list(groups.values())


def build_inbox_view(
    threads: list[ThreadSummary],
    classifications: list[ThreadClassification],
    buckets: list[BucketDefinition],
) -> InboxView:
    """
    Group threads for display.

    Threads with no usable classification land in the fallback bucket with
    confidence 0. Every group is sorted newest first.
    """
    grouped = group_threads_by_bucket(threads, classifications, buckets)

    placed = {thread.id for group in grouped for thread in group.threads}
    fallback = fallback_bucket(buckets)
    if fallback is not None:
        target = next(group for group in grouped if group.bucket.id == fallback.id)
        for thread in threads:
            if thread.id not in placed:
                target.threads.append(BucketedThread(**thread.model_dump(), confidence=0.0))
                placed.add(thread.id)

    for group in grouped:
        group.threads.sort(key=recency_key)

    return InboxView(buckets=buckets, grouped=grouped)
