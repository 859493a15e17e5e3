"""
Bucket classification and inbox search.

Cascade per batch of threads:
1. Each configured LLM provider in order, asked only about threads the
   previous provider did not resolve
2. keyword_heuristic for anything still unresolved, including batches that
   missed the overall deadline

Batches run on a bounded thread pool. The result always has exactly one
classification per input thread, in input order.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import lru_cache

from openai import OpenAIError
from pydantic import BaseModel, ConfigDict, Field, field_validator

from inbox_helper.classification.heuristics import NoBucketsError, keyword_heuristic, keyword_search
from inbox_helper.classification.prompts import (
    CLASSIFY_SYSTEM,
    SEARCH_SYSTEM,
    build_classification_prompt,
    build_search_prompt,
)
from inbox_helper.config import LLM_BATCH_SIZE, LLM_CLASSIFY_DEADLINE_SECONDS, LLM_MAX_WORKERS
from inbox_helper.llm.providers import ChatProvider, get_providers
from inbox_helper.llm.retry import call_llm, extract_json
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event, time_block
from inbox_helper.storage.models import BucketDefinition, ThreadClassification, ThreadSummary
from inbox_helper.utils.redaction import redact

logger = get_logger(__name__)

# Errors that mean "this provider gave no usable answer"; the next one is tried
PROVIDER_ERRORS = (ValueError, OSError, OpenAIError)


class LLMClassificationItem(BaseModel):
    """One entry of the model's classification response."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(alias="threadId")
    bucket_id: str = Field(alias="bucketId")
    confidence: float = 0.5
    reason: str | None = None

    @field_validator("thread_id", "bucket_id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> object:
        # Models sometimes return numeric ids unquoted
        return str(v) if isinstance(v, int) else v


class LLMClassificationResponse(BaseModel):
    classifications: list[LLMClassificationItem] = Field(default_factory=list)


class LLMSearchResponse(BaseModel):
    ids: list[str] = Field(default_factory=list)

    @field_validator("ids", mode="before")
    @classmethod
    def coerce_ids(cls, v: object) -> object:
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class BucketClassifier:
    """Classifies threads into buckets and ranks threads for search queries."""

    def __init__(
        self,
        providers: Sequence[ChatProvider] | None = None,
        batch_size: int = LLM_BATCH_SIZE,
        max_workers: int = LLM_MAX_WORKERS,
        deadline_seconds: float = LLM_CLASSIFY_DEADLINE_SECONDS,
    ) -> None:
        self.providers = tuple(get_providers() if providers is None else providers)
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.deadline_seconds = deadline_seconds

    def classify_threads(
        self, threads: list[ThreadSummary], buckets: list[BucketDefinition]
    ) -> list[ThreadClassification]:
        """
        Raises:
            NoBucketsError: If buckets is empty
        """
        if not buckets:
            raise NoBucketsError("At least one bucket is required for classification")
        if not threads:
            return []

        resolved: dict[str, ThreadClassification] = {}
        if self.providers:
            batches = [
                threads[start : start + self.batch_size]
                for start in range(0, len(threads), self.batch_size)
            ]
            with time_block("classifier.classify.latency"):
                resolved = self._classify_batches(batches, buckets)

        results = []
        heuristic_count = 0
        for thread in threads:
            classification = resolved.get(thread.id)
            if classification is None:
                classification = keyword_heuristic(thread, buckets)
                heuristic_count += 1
            results.append(classification)

        counter("classifier.llm_resolved", len(threads) - heuristic_count)
        counter("classifier.heuristic_fallback", heuristic_count)
        log_event(
            "classifier.classified",
            total=len(threads),
            llm=len(threads) - heuristic_count,
            heuristic=heuristic_count,
            providers=[p.name for p in self.providers],
        )
        return results

    def _classify_batches(
        self, batches: list[list[ThreadSummary]], buckets: list[BucketDefinition]
    ) -> dict[str, ThreadClassification]:
        resolved: dict[str, ThreadClassification] = {}
        pool = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(batches)), thread_name_prefix="classify"
        )
        try:
            futures: list[Future[dict[str, ThreadClassification]]] = [
                pool.submit(self._classify_batch, batch, buckets) for batch in batches
            ]
            done, not_done = wait(futures, timeout=self.deadline_seconds)

            for future in done:
                try:
                    resolved.update(future.result())
                except Exception as e:
                    logger.error("Batch classification crashed: %s", e, exc_info=True)
                    counter("classifier.batch_crashed")

            if not_done:
                counter("classifier.batch_timeout", len(not_done))
                logger.warning(
                    "%d/%d classification batches missed the %.0fs deadline",
                    len(not_done),
                    len(futures),
                    self.deadline_seconds,
                )
                for future in not_done:
                    future.cancel()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return resolved

    def _classify_batch(
        self, batch: list[ThreadSummary], buckets: list[BucketDefinition]
    ) -> dict[str, ThreadClassification]:
        bucket_ids = {bucket.id for bucket in buckets}
        resolved: dict[str, ThreadClassification] = {}
        pending = list(batch)

        for provider in self.providers:
            if not pending:
                break
            try:
                text = call_llm(
                    provider,
                    CLASSIFY_SYSTEM,
                    build_classification_prompt(pending, buckets),
                    counter_prefix="classifier",
                )
                response = LLMClassificationResponse.model_validate(extract_json(text))
            except PROVIDER_ERRORS as e:
                counter(f"classifier.{provider.name}.failed")
                log_event(
                    "classifier.provider_failed",
                    provider=provider.name,
                    batch_size=len(pending),
                    error=type(e).__name__,
                )
                continue

            pending_ids = {thread.id for thread in pending}
            rejected = 0
            for item in response.classifications:
                if item.thread_id not in pending_ids or item.bucket_id not in bucket_ids:
                    rejected += 1
                    continue
                if item.thread_id in resolved:
                    continue
                resolved[item.thread_id] = ThreadClassification(
                    thread_id=item.thread_id,
                    bucket_id=item.bucket_id,
                    confidence=_clamp(item.confidence),
                    reason=item.reason or f"Classified by {provider.name}",
                )
            if rejected:
                counter(f"classifier.{provider.name}.rejected_items", rejected)

            pending = [thread for thread in pending if thread.id not in resolved]

        return resolved

    def search_relevant_threads(
        self, query: str, threads: list[ThreadSummary], limit: int
    ) -> list[str]:
        """
        Ids of the threads most relevant to query, best first, at most limit.

        Falls back to keyword scoring when no provider answers.
        """
        if not threads or limit < 1:
            return []

        candidate_ids = {thread.id for thread in threads}
        for provider in self.providers:
            try:
                text = call_llm(
                    provider,
                    SEARCH_SYSTEM,
                    build_search_prompt(query, threads, limit),
                    counter_prefix="search",
                )
                response = LLMSearchResponse.model_validate(extract_json(text))
            except PROVIDER_ERRORS as e:
                counter(f"search.{provider.name}.failed")
                log_event("search.provider_failed", provider=provider.name, error=type(e).__name__)
                continue

            ids = [i for i in dict.fromkeys(response.ids) if i in candidate_ids][:limit]
            log_event(
                "search.completed",
                provider=provider.name,
                query=redact(query),
                candidates=len(threads),
                results=len(ids),
            )
            return ids

        counter("search.keyword_fallback")
        ids = keyword_search(query, threads, limit)
        log_event(
            "search.completed",
            provider="keyword",
            query=redact(query),
            candidates=len(threads),
            results=len(ids),
        )
        return ids


@lru_cache(maxsize=1)
def get_classifier() -> BucketClassifier:
    return BucketClassifier()


__all__ = ["BucketClassifier", "NoBucketsError", "get_classifier"]
