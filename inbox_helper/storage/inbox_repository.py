"""Stored thread snapshots and their current classifications

The snapshot table is a rolling window of the user's newest messages; each
save replaces the whole window so deleted or aged-out mail disappears.
"""

from __future__ import annotations

import sqlite3

from inbox_helper.classification.grouping import build_inbox_view
from inbox_helper.config import MAX_STORED_THREADS, NO_PREVIEW_TEXT
from inbox_helper.infrastructure.database import db_transaction, retry_on_db_lock
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage import BaseRepository
from inbox_helper.storage.bucket_repository import BucketRepository
from inbox_helper.storage.models import (
    BucketDefinition,
    InboxView,
    ThreadClassification,
    ThreadSummary,
    sort_by_recency,
)

logger = get_logger(__name__)


def normalize_snippet(snippet: str | None) -> str:
    if snippet and snippet.strip():
        return snippet
    return NO_PREVIEW_TEXT


def _row_to_thread(row: sqlite3.Row) -> ThreadSummary:
    return ThreadSummary(
        id=row["thread_id"],
        subject=row["subject"],
        snippet=normalize_snippet(row["snippet"]),
        sender=row["sender"],
        received_at=row["received_at"],
    )


def _insert_classifications(
    conn: sqlite3.Connection, user_id: str, classifications: list[ThreadClassification]
) -> None:
    conn.executemany(
        """
        INSERT OR REPLACE INTO thread_classifications
            (user_id, thread_id, bucket_id, confidence, reason)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (user_id, c.thread_id, c.bucket_id, c.confidence, c.reason)
            for c in classifications
        ],
    )


class InboxRepository(BaseRepository):
    def __init__(self, buckets: BucketRepository | None = None) -> None:
        super().__init__("thread_snapshots")
        self.buckets = buckets or BucketRepository()

    def get_threads(self, user_id: str) -> list[ThreadSummary]:
        rows = self.query_all(
            "SELECT * FROM thread_snapshots WHERE user_id = ?",
            (user_id,),
        )
        return sort_by_recency([_row_to_thread(row) for row in rows])

    def get_classifications(self, user_id: str) -> list[ThreadClassification]:
        rows = self.query_all(
            "SELECT * FROM thread_classifications WHERE user_id = ?",
            (user_id,),
        )
        return [
            ThreadClassification(
                thread_id=row["thread_id"],
                bucket_id=row["bucket_id"],
                confidence=row["confidence"],
                reason=row["reason"],
            )
            for row in rows
        ]

    def get_threads_and_buckets(
        self, user_id: str
    ) -> tuple[list[ThreadSummary], list[BucketDefinition]]:
        buckets = self.buckets.ensure_defaults(user_id)
        return self.get_threads(user_id), buckets

    @retry_on_db_lock()
    def save_threads_and_classifications(
        self,
        user_id: str,
        threads: list[ThreadSummary],
        classifications: list[ThreadClassification],
    ) -> None:
        """Replace the stored window with the newest MAX_STORED_THREADS threads."""
        kept = sort_by_recency(threads)[:MAX_STORED_THREADS]
        kept_ids = {thread.id for thread in kept}
        kept_classifications = [c for c in classifications if c.thread_id in kept_ids]

        with db_transaction() as conn:
            conn.execute("DELETE FROM thread_snapshots WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM thread_classifications WHERE user_id = ?", (user_id,))
            conn.executemany(
                """
                INSERT OR REPLACE INTO thread_snapshots
                    (user_id, thread_id, subject, snippet, sender, received_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        user_id,
                        t.id,
                        t.subject,
                        normalize_snippet(t.snippet),
                        t.sender,
                        t.received_at,
                    )
                    for t in kept
                ],
            )
            _insert_classifications(conn, user_id, kept_classifications)

        log_event(
            "inbox.saved",
            threads=len(kept),
            dropped=len(threads) - len(kept),
            classifications=len(kept_classifications),
        )

    @retry_on_db_lock()
    def save_classifications(
        self, user_id: str, classifications: list[ThreadClassification]
    ) -> None:
        with db_transaction() as conn:
            conn.execute("DELETE FROM thread_classifications WHERE user_id = ?", (user_id,))
            _insert_classifications(conn, user_id, classifications)

    def get_inbox(self, user_id: str) -> InboxView:
        threads, buckets = self.get_threads_and_buckets(user_id)
        return build_inbox_view(threads, self.get_classifications(user_id), buckets)
