"""Bucket definitions per user

Every user always has at least one bucket: the four defaults are created on
first access and the last remaining bucket cannot be deleted.
"""

from __future__ import annotations

import sqlite3

from inbox_helper.config import DEFAULT_BUCKETS
from inbox_helper.infrastructure.database import db_transaction, retry_on_db_lock
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.storage import BaseRepository, now_ms
from inbox_helper.storage.models import BucketDefinition

logger = get_logger(__name__)


class BucketNotFoundError(ValueError):
    """Bucket is missing or belongs to another user."""

    def __init__(self, message: str = "Bucket not found") -> None:
        super().__init__(message)


class LastBucketError(ValueError):
    """Refusing to delete a user's only bucket."""

    def __init__(self, message: str = "Cannot delete the last category") -> None:
        super().__init__(message)


def _row_to_bucket(row: sqlite3.Row) -> BucketDefinition:
    return BucketDefinition(
        id=str(row["id"]),
        name=row["name"],
        type=row["type"],
        description=row["description"],
    )


class BucketRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("bucket_definitions")

    def list_buckets(self, user_id: str) -> list[BucketDefinition]:
        rows = self.query_all(
            "SELECT * FROM bucket_definitions WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        )
        return [_row_to_bucket(row) for row in rows]

    @retry_on_db_lock()
    def ensure_defaults(self, user_id: str) -> list[BucketDefinition]:
        """Seed the default buckets for a user who has none, then return all buckets."""
        with db_transaction() as conn:
            # Take the write lock before counting so concurrent first requests seed once
            if not conn.in_transaction:
                conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute(
                "SELECT COUNT(*) FROM bucket_definitions WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            if existing == 0:
                created_at = now_ms()
                conn.executemany(
                    """
                    INSERT INTO bucket_definitions (user_id, name, type, description, created_at)
                    VALUES (?, ?, 'default', ?, ?)
                    """,
                    [
                        (user_id, bucket["name"], bucket["description"], created_at)
                        for bucket in DEFAULT_BUCKETS
                    ],
                )
                counter("buckets.defaults_seeded")
                log_event("buckets.defaults_seeded", count=len(DEFAULT_BUCKETS))

        return self.list_buckets(user_id)

    def get_bucket(self, user_id: str, bucket_id: str) -> BucketDefinition | None:
        if not bucket_id.isdigit():
            return None
        row = self.query_one(
            "SELECT * FROM bucket_definitions WHERE id = ? AND user_id = ?",
            (int(bucket_id), user_id),
        )
        return _row_to_bucket(row) if row else None

    def add_bucket(
        self, user_id: str, name: str, description: str | None = None
    ) -> BucketDefinition:
        self.ensure_defaults(user_id)
        bucket_id = self.execute(
            """
            INSERT INTO bucket_definitions (user_id, name, type, description, created_at)
            VALUES (?, ?, 'custom', ?, ?)
            """,
            (user_id, name, description, now_ms()),
        )
        log_event("buckets.created", bucket_id=bucket_id)
        return BucketDefinition(
            id=str(bucket_id), name=name, type="custom", description=description
        )

    def update_bucket(
        self, user_id: str, bucket_id: str, name: str, description: str | None = None
    ) -> BucketDefinition:
        """
        Raises:
            BucketNotFoundError: If the bucket does not exist for this user
        """
        bucket = self.get_bucket(user_id, bucket_id)
        if bucket is None:
            raise BucketNotFoundError()

        self.execute(
            "UPDATE bucket_definitions SET name = ?, description = ? WHERE id = ? AND user_id = ?",
            (name, description, int(bucket_id), user_id),
        )
        log_event("buckets.updated", bucket_id=bucket_id)
        return bucket.model_copy(update={"name": name, "description": description})

    @retry_on_db_lock()
    def delete_bucket(self, user_id: str, bucket_id: str) -> None:
        """
        Delete a bucket along with the classifications and cache rows that point at it.

        Raises:
            BucketNotFoundError: If the bucket does not exist for this user
            LastBucketError: If it is the user's only bucket
        """
        if self.get_bucket(user_id, bucket_id) is None:
            raise BucketNotFoundError()

        with db_transaction() as conn:
            if not conn.in_transaction:
                conn.execute("BEGIN IMMEDIATE")
            remaining = conn.execute(
                "SELECT COUNT(*) FROM bucket_definitions WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            if remaining <= 1:
                raise LastBucketError()

            conn.execute(
                "DELETE FROM bucket_definitions WHERE id = ? AND user_id = ?",
                (int(bucket_id), user_id),
            )
            conn.execute(
                "DELETE FROM thread_classifications WHERE user_id = ? AND bucket_id = ?",
                (user_id, bucket_id),
            )
            conn.execute(
                "DELETE FROM email_classification_cache WHERE user_id = ? AND bucket_id = ?",
                (user_id, bucket_id),
            )

        log_event("buckets.deleted", bucket_id=bucket_id)
