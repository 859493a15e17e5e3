"""Per-user, per-message classification cache

Reused across runs so a message is sent to the LLM once, until its bucket is
deleted or the user reclassifies everything.
"""

from __future__ import annotations

from inbox_helper.infrastructure.database import db_transaction, retry_on_db_lock
from inbox_helper.observability.telemetry import counter
from inbox_helper.storage import BaseRepository, now_ms
from inbox_helper.storage.models import ThreadClassification

# SQLite's default host parameter limit is 999
_QUERY_CHUNK = 500


class ClassificationCacheRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("email_classification_cache")

    def get_cached(
        self, user_id: str, email_ids: list[str]
    ) -> dict[str, ThreadClassification]:
        """Cached entries for the given ids; ids with no entry are absent from the result."""
        unique_ids = list(dict.fromkeys(email_ids))
        found: dict[str, ThreadClassification] = {}

        for start in range(0, len(unique_ids), _QUERY_CHUNK):
            chunk = unique_ids[start : start + _QUERY_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            rows = self.query_all(
                f"""
                SELECT email_id, bucket_id, confidence, reason
                FROM email_classification_cache
                WHERE user_id = ? AND email_id IN ({placeholders})
                """,
                (user_id, *chunk),
            )
            for row in rows:
                found[row["email_id"]] = ThreadClassification(
                    thread_id=row["email_id"],
                    bucket_id=row["bucket_id"],
                    confidence=row["confidence"],
                    reason=row["reason"],
                )

        counter("cache.hits", len(found))
        counter("cache.misses", len(unique_ids) - len(found))
        return found

    @retry_on_db_lock()
    def upsert(self, user_id: str, classifications: list[ThreadClassification]) -> int:
        """
        Insert or update entries. Later duplicates of an email id win; an
        existing reason is kept when the new entry has none.

        Returns:
            Number of distinct entries written
        """
        latest = {c.thread_id: c for c in classifications}
        if not latest:
            return 0

        updated_at = now_ms()
        with db_transaction() as conn:
            conn.executemany(
                """
                INSERT INTO email_classification_cache
                    (user_id, email_id, bucket_id, confidence, reason, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, email_id) DO UPDATE SET
                    bucket_id = excluded.bucket_id,
                    confidence = excluded.confidence,
                    reason = COALESCE(excluded.reason, email_classification_cache.reason),
                    updated_at = excluded.updated_at
                """,
                [
                    (user_id, c.thread_id, c.bucket_id, c.confidence, c.reason, updated_at)
                    for c in latest.values()
                ],
            )
        return len(latest)
