"""Fixed-window request counters shared by all API workers."""

from __future__ import annotations

from typing import NamedTuple

from inbox_helper.infrastructure.database import db_transaction, retry_on_db_lock
from inbox_helper.storage import BaseRepository, now_ms


class RateLimitDecision(NamedTuple):
    allowed: bool
    remaining: int
    reset_at: int


class RateLimitRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("rate_limits")

    @retry_on_db_lock()
    def consume(
        self, key: str, limit: int, window_ms: int, now: int | None = None
    ) -> RateLimitDecision:
        """
        Count one request against key in the current window.

        Windows are aligned to multiples of window_ms, so every caller agrees on
        where a window starts without coordination.
        """
        current = now_ms() if now is None else now
        window_start = (current // window_ms) * window_ms
        reset_at = window_start + window_ms

        with db_transaction() as conn:
            # Take the write lock before reading so concurrent workers serialize
            if not conn.in_transaction:
                conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT window_start, count FROM rate_limits WHERE key = ?", (key,)
            ).fetchone()

            if row is None or row["window_start"] != window_start:
                conn.execute(
                    """
                    INSERT INTO rate_limits (key, window_start, count) VALUES (?, ?, 1)
                    ON CONFLICT(key) DO UPDATE SET window_start = excluded.window_start, count = 1
                    """,
                    (key, window_start),
                )
                return RateLimitDecision(True, max(limit - 1, 0), reset_at)

            count = row["count"]
            if count >= limit:
                return RateLimitDecision(False, 0, reset_at)

            conn.execute("UPDATE rate_limits SET count = count + 1 WHERE key = ?", (key,))
            return RateLimitDecision(True, max(limit - count - 1, 0), reset_at)
