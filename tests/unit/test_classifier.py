"""Unit tests for BucketClassifier

Tests cover:
- Provider answers mapped onto threads (clamping, default reasons, id coercion)
- Fallback to the next provider, then to keyword rules
- Batching and the overall deadline
- Search ranking and its keyword fallback
"""

from __future__ import annotations

import json
import time

import pytest
from openai import OpenAIError

from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.classification.heuristics import NoBucketsError
from inbox_helper.observability.telemetry import get_counters
from inbox_helper.storage.models import BucketDefinition, ThreadSummary

BUCKETS = [
    BucketDefinition(id="1", name="Important", type="default"),
    BucketDefinition(id="2", name="Can Wait", type="default"),
    BucketDefinition(id="3", name="Auto-archive", type="default"),
    BucketDefinition(id="4", name="Newsletter", type="default"),
]


class FakeProvider:
    """Stands in for ChatProvider; responder(system, prompt) returns text or an exception."""

    def __init__(self, name, responder):
        self.name = name
        self.responder = responder
        self.prompts = []

    def complete(self, system, prompt):
        self.prompts.append(prompt)
        result = self.responder(system, prompt)
        if isinstance(result, Exception):
            raise result
        return result


def thread(thread_id, subject="Hello", snippet="", received_at=None):
    return ThreadSummary(id=thread_id, subject=subject, snippet=snippet, received_at=received_at)


def classifications(*items):
    return json.dumps(
        {
            "classifications": [
                {"threadId": t, "bucketId": b, "confidence": c, "reason": r}
                for t, b, c, r in items
            ]
        }
    )


class TestClassifyThreads:
    def test_provider_answer_used(self):
        provider = FakeProvider(
            "fake", lambda s, p: classifications(("a", "1", 0.9, "Boss asks"), ("b", "3", 0.7, None))
        )
        classifier = BucketClassifier(providers=[provider])

        results = classifier.classify_threads([thread("a"), thread("b")], BUCKETS)

        assert [(r.thread_id, r.bucket_id) for r in results] == [("a", "1"), ("b", "3")]
        assert results[0].reason == "Boss asks"
        assert results[1].reason == "Classified by fake"

    def test_confidence_clamped(self):
        provider = FakeProvider("fake", lambda s, p: classifications(("a", "1", 1.7, "x")))
        results = BucketClassifier(providers=[provider]).classify_threads([thread("a")], BUCKETS)
        assert results[0].confidence == 1.0

    def test_numeric_ids_coerced(self):
        provider = FakeProvider(
            "fake",
            lambda s, p: json.dumps(
                {"classifications": [{"threadId": 42, "bucketId": 2, "confidence": 0.5}]}
            ),
        )
        results = BucketClassifier(providers=[provider]).classify_threads([thread("42")], BUCKETS)
        assert results[0].bucket_id == "2"

    def test_unknown_bucket_falls_back_to_heuristic(self):
        provider = FakeProvider("fake", lambda s, p: classifications(("a", "99", 0.9, "x")))
        results = BucketClassifier(providers=[provider]).classify_threads(
            [thread("a", subject="Weekly digest")], BUCKETS
        )
        assert results[0].bucket_id == "4"
        assert results[0].reason == "Newsletter markers detected"

    def test_failed_provider_falls_through_to_next(self):
        broken = FakeProvider("broken", lambda s, p: OpenAIError("invalid api key"))
        working = FakeProvider("working", lambda s, p: classifications(("a", "1", 0.8, "x")))
        classifier = BucketClassifier(providers=[broken, working])

        results = classifier.classify_threads([thread("a")], BUCKETS)

        assert results[0].bucket_id == "1"
        assert len(broken.prompts) == 1
        assert get_counters()["classifier.broken.failed"] == 1

    def test_unparseable_answer_falls_through(self):
        garbled = FakeProvider("garbled", lambda s, p: "Sorry, I can't help with that.")
        working = FakeProvider("working", lambda s, p: classifications(("a", "2", 0.8, "x")))
        results = BucketClassifier(providers=[garbled, working]).classify_threads(
            [thread("a")], BUCKETS
        )
        assert results[0].bucket_id == "2"

    def test_next_provider_only_sees_unresolved_threads(self):
        partial = FakeProvider("partial", lambda s, p: classifications(("a", "1", 0.9, "x")))
        second = FakeProvider("second", lambda s, p: classifications(("b", "2", 0.9, "y")))
        classifier = BucketClassifier(providers=[partial, second])

        results = classifier.classify_threads([thread("a"), thread("b")], BUCKETS)

        assert [r.bucket_id for r in results] == ["1", "2"]
        assert '"id": "b"' in second.prompts[0]
        assert '"id": "a"' not in second.prompts[0]

    def test_all_providers_failing_uses_heuristics(self):
        broken = FakeProvider("broken", lambda s, p: ValueError("bad"))
        results = BucketClassifier(providers=[broken]).classify_threads(
            [thread("a", subject="URGENT: reply"), thread("b")], BUCKETS
        )
        assert [r.bucket_id for r in results] == ["1", "2"]
        assert get_counters()["classifier.heuristic_fallback"] == 2

    def test_no_providers_uses_heuristics(self):
        results = BucketClassifier(providers=[]).classify_threads([thread("a")], BUCKETS)
        assert results[0].bucket_id == "2"
        assert results[0].confidence == 0.6

    def test_results_follow_input_order(self):
        provider = FakeProvider(
            "fake",
            lambda s, p: classifications(("c", "1", 0.9, "x"), ("a", "2", 0.9, "x"), ("b", "3", 0.9, "x")),
        )
        results = BucketClassifier(providers=[provider]).classify_threads(
            [thread("a"), thread("b"), thread("c")], BUCKETS
        )
        assert [r.thread_id for r in results] == ["a", "b", "c"]

    def test_threads_split_into_batches(self):
        provider = FakeProvider("fake", lambda s, p: classifications())
        classifier = BucketClassifier(providers=[provider], batch_size=2, max_workers=2)

        results = classifier.classify_threads([thread(str(i)) for i in range(5)], BUCKETS)

        assert len(results) == 5
        assert len(provider.prompts) == 3

    def test_batches_missing_deadline_use_heuristics(self):
        def slow(system, prompt):
            time.sleep(0.5)
            return classifications(("a", "1", 0.9, "x"))

        classifier = BucketClassifier(
            providers=[FakeProvider("slow", slow)], deadline_seconds=0.05
        )
        results = classifier.classify_threads([thread("a")], BUCKETS)

        assert results[0].bucket_id == "2"
        assert get_counters()["classifier.batch_timeout"] == 1

    def test_empty_threads(self):
        assert BucketClassifier(providers=[]).classify_threads([], BUCKETS) == []

    def test_empty_buckets_raise(self):
        with pytest.raises(NoBucketsError):
            BucketClassifier(providers=[]).classify_threads([thread("a")], [])


class TestSearchRelevantThreads:
    THREADS = [
        thread("a", subject="Flight to Lisbon", received_at=3_000),
        thread("b", subject="Dinner plans", received_at=2_000),
        thread("c", subject="Flight receipt", received_at=1_000),
    ]

    def test_provider_ids_filtered_and_limited(self):
        provider = FakeProvider(
            "fake", lambda s, p: json.dumps({"ids": ["c", "zzz", "c", "a", "b"]})
        )
        ids = BucketClassifier(providers=[provider]).search_relevant_threads(
            "trips", self.THREADS, 2
        )
        assert ids == ["c", "a"]

    def test_empty_provider_answer_is_respected(self):
        provider = FakeProvider("fake", lambda s, p: json.dumps({"ids": []}))
        ids = BucketClassifier(providers=[provider]).search_relevant_threads(
            "flight", self.THREADS, 5
        )
        assert ids == []

    def test_failed_provider_falls_back_to_keywords(self):
        broken = FakeProvider("broken", lambda s, p: ValueError("nope"))
        ids = BucketClassifier(providers=[broken]).search_relevant_threads(
            "flight", self.THREADS, 5
        )
        assert ids == ["a", "c"]
        assert get_counters()["search.keyword_fallback"] == 1

    def test_no_providers_uses_keywords(self):
        ids = BucketClassifier(providers=[]).search_relevant_threads("dinner", self.THREADS, 5)
        assert ids == ["b"]

    def test_no_candidates(self):
        assert BucketClassifier(providers=[]).search_relevant_threads("flight", [], 5) == []
