"""Unit tests for the SQLite repositories"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from inbox_helper.config import DEFAULT_BUCKETS, MAX_STORED_THREADS, NO_PREVIEW_TEXT
from inbox_helper.infrastructure.database import get_db_connection
from inbox_helper.storage.bucket_repository import (
    BucketNotFoundError,
    BucketRepository,
    LastBucketError,
)
from inbox_helper.storage.classification_cache import ClassificationCacheRepository
from inbox_helper.storage.inbox_repository import InboxRepository
from inbox_helper.storage.models import GoogleOAuthToken, ThreadClassification, ThreadSummary
from inbox_helper.storage.token_repository import TokenRepository

USER = "user-1"


def thread(thread_id, received_at=None, snippet="preview"):
    return ThreadSummary(
        id=thread_id, subject=f"Subject {thread_id}", snippet=snippet, received_at=received_at
    )


class TestBucketRepository:
    def test_defaults_seeded_once(self):
        repo = BucketRepository()
        first = repo.ensure_defaults(USER)
        second = repo.ensure_defaults(USER)

        assert [b.name for b in first] == [b["name"] for b in DEFAULT_BUCKETS]
        assert all(b.type == "default" for b in first)
        assert [b.id for b in first] == [b.id for b in second]

    def test_concurrent_first_access_seeds_once(self):
        workers = 8
        barrier = threading.Barrier(workers)

        def seed(user_id):
            barrier.wait()
            BucketRepository().ensure_defaults(user_id)

        for n in range(5):
            user_id = f"race-{n}"
            with ThreadPoolExecutor(max_workers=workers) as pool:
                list(pool.map(seed, [user_id] * workers))

            names = [b.name for b in BucketRepository().list_buckets(user_id)]
            assert names == [b["name"] for b in DEFAULT_BUCKETS]

    def test_add_bucket_seeds_defaults_first(self):
        repo = BucketRepository()
        created = repo.add_bucket(USER, "Travel", "Flights and hotels")

        buckets = repo.list_buckets(USER)
        assert len(buckets) == len(DEFAULT_BUCKETS) + 1
        assert buckets[-1] == created
        assert created.type == "custom"

    def test_update_bucket(self):
        repo = BucketRepository()
        bucket = repo.ensure_defaults(USER)[0]

        updated = repo.update_bucket(USER, bucket.id, "Urgent", "Needs a reply today")

        assert updated.name == "Urgent"
        assert repo.get_bucket(USER, bucket.id).description == "Needs a reply today"

    def test_update_other_users_bucket_not_found(self):
        repo = BucketRepository()
        bucket = repo.ensure_defaults("someone-else")[0]
        with pytest.raises(BucketNotFoundError):
            repo.update_bucket(USER, bucket.id, "Mine now")

    def test_get_bucket_non_numeric_id(self):
        assert BucketRepository().get_bucket(USER, "abc") is None

    def test_delete_bucket_removes_its_classifications_and_cache(self):
        repo = BucketRepository()
        bucket = repo.ensure_defaults(USER)[0]
        classification = ThreadClassification(thread_id="a", bucket_id=bucket.id, confidence=0.9)
        inbox = InboxRepository(repo)
        inbox.save_threads_and_classifications(USER, [thread("a")], [classification])
        ClassificationCacheRepository().upsert(USER, [classification])

        repo.delete_bucket(USER, bucket.id)

        assert repo.get_bucket(USER, bucket.id) is None
        assert inbox.get_classifications(USER) == []
        assert ClassificationCacheRepository().get_cached(USER, ["a"]) == {}

    def test_delete_last_bucket_refused(self):
        repo = BucketRepository()
        buckets = repo.ensure_defaults(USER)
        for bucket in buckets[1:]:
            repo.delete_bucket(USER, bucket.id)

        with pytest.raises(LastBucketError, match="Cannot delete the last category"):
            repo.delete_bucket(USER, buckets[0].id)

    def test_delete_missing_bucket(self):
        repo = BucketRepository()
        repo.ensure_defaults(USER)
        with pytest.raises(BucketNotFoundError):
            repo.delete_bucket(USER, "99999")


class TestInboxRepository:
    def test_save_replaces_window(self):
        inbox = InboxRepository()
        inbox.save_threads_and_classifications(USER, [thread("a"), thread("b")], [])
        inbox.save_threads_and_classifications(USER, [thread("c")], [])

        assert [t.id for t in inbox.get_threads(USER)] == ["c"]

    def test_keeps_newest_threads_only(self):
        inbox = InboxRepository()
        threads = [thread(f"t{i:03d}", received_at=i) for i in range(MAX_STORED_THREADS + 5)]
        classifications = [
            ThreadClassification(thread_id=t.id, bucket_id="1", confidence=0.5) for t in threads
        ]

        inbox.save_threads_and_classifications(USER, threads, classifications)

        stored = inbox.get_threads(USER)
        assert len(stored) == MAX_STORED_THREADS
        assert stored[0].id == f"t{MAX_STORED_THREADS + 4:03d}"
        assert "t000" not in {t.id for t in stored}
        assert len(inbox.get_classifications(USER)) == MAX_STORED_THREADS

    def test_snippet_kept_as_received(self):
        inbox = InboxRepository()
        inbox.save_threads_and_classifications(USER, [thread("a", snippet="  Hello there ")], [])
        assert inbox.get_threads(USER)[0].snippet == "  Hello there "

    def test_blank_snippet_normalized(self):
        inbox = InboxRepository()
        inbox.save_threads_and_classifications(USER, [thread("a", snippet="   ")], [])
        assert inbox.get_threads(USER)[0].snippet == NO_PREVIEW_TEXT

    def test_save_classifications_replaces_all(self):
        inbox = InboxRepository()
        inbox.save_threads_and_classifications(
            USER,
            [thread("a"), thread("b")],
            [ThreadClassification(thread_id="a", bucket_id="1", confidence=0.5)],
        )
        inbox.save_classifications(
            USER, [ThreadClassification(thread_id="b", bucket_id="2", confidence=0.7)]
        )

        assert [(c.thread_id, c.bucket_id) for c in inbox.get_classifications(USER)] == [("b", "2")]

    def test_get_inbox_groups_stored_threads(self):
        inbox = InboxRepository()
        buckets = BucketRepository().ensure_defaults(USER)
        inbox.save_threads_and_classifications(
            USER,
            [thread("a", 2), thread("b", 1)],
            [ThreadClassification(thread_id="a", bucket_id=buckets[0].id, confidence=0.9)],
        )

        view = inbox.get_inbox(USER)

        assert [t.id for t in view.grouped[0].threads] == ["a"]
        can_wait = next(g for g in view.grouped if g.bucket.name == "Can Wait")
        assert [t.id for t in can_wait.threads] == ["b"]

    def test_users_are_isolated(self):
        inbox = InboxRepository()
        inbox.save_threads_and_classifications(USER, [thread("a")], [])
        inbox.save_threads_and_classifications("other", [thread("z")], [])
        assert [t.id for t in inbox.get_threads(USER)] == ["a"]


class TestClassificationCache:
    def test_upsert_last_duplicate_wins(self):
        cache = ClassificationCacheRepository()
        written = cache.upsert(
            USER,
            [
                ThreadClassification(thread_id="a", bucket_id="1", confidence=0.5),
                ThreadClassification(thread_id="a", bucket_id="2", confidence=0.6),
            ],
        )
        assert written == 1
        assert cache.get_cached(USER, ["a"])["a"].bucket_id == "2"

    def test_upsert_keeps_reason_when_new_one_missing(self):
        cache = ClassificationCacheRepository()
        cache.upsert(
            USER, [ThreadClassification(thread_id="a", bucket_id="1", confidence=0.5, reason="r1")]
        )
        cache.upsert(USER, [ThreadClassification(thread_id="a", bucket_id="2", confidence=0.8)])

        entry = cache.get_cached(USER, ["a"])["a"]
        assert entry.bucket_id == "2"
        assert entry.reason == "r1"

    def test_get_cached_many_ids(self):
        cache = ClassificationCacheRepository()
        ids = [f"m{i}" for i in range(1200)]
        cache.upsert(
            USER,
            [ThreadClassification(thread_id=i, bucket_id="1", confidence=0.5) for i in ids[::2]],
        )
        assert len(cache.get_cached(USER, ids)) == 600

    def test_empty_upsert(self):
        assert ClassificationCacheRepository().upsert(USER, []) == 0


class TestTokenRepository:
    def test_round_trip_and_encryption_at_rest(self):
        repo = TokenRepository()
        repo.save_token(
            USER,
            GoogleOAuthToken(
                access_token="ya29.secret", refresh_token="1//refresh", expires_at=123, scope="s"
            ),
        )

        token = repo.get_token(USER)
        assert token.access_token == "ya29.secret"
        assert token.refresh_token == "1//refresh"
        assert token.expires_at == 123

        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT access_token, refresh_token FROM oauth_tokens WHERE user_id = ?", (USER,)
            ).fetchone()
        assert "ya29.secret" not in row["access_token"]
        assert "1//refresh" not in row["refresh_token"]

    def test_update_keeps_refresh_token(self):
        repo = TokenRepository()
        repo.save_token(USER, GoogleOAuthToken(access_token="old", refresh_token="keep-me"))
        repo.save_token(USER, GoogleOAuthToken(access_token="new"))

        token = repo.get_token(USER)
        assert token.access_token == "new"
        assert token.refresh_token == "keep-me"

    def test_missing_token(self):
        assert TokenRepository().get_token(USER) is None

    def test_delete_token(self):
        repo = TokenRepository()
        repo.save_token(USER, GoogleOAuthToken(access_token="x"))
        assert repo.delete_token(USER) is True
        assert repo.delete_token(USER) is False
        assert repo.get_token(USER) is None
