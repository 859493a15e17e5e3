"""Chat-style search over the stored inbox."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from inbox_helper.api.dependencies import get_bucket_classifier, get_inbox_repository
from inbox_helper.api.errors import ApiError
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.api.models import ChatSearchRequest
from inbox_helper.api.responses import thread_payload
from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.config import SEARCH_CANDIDATE_LIMIT, SEARCH_DEFAULT_LIMIT
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage.inbox_repository import InboxRepository
from inbox_helper.storage.models import sort_by_recency
from inbox_helper.utils.error_sanitizer import get_safe_error_detail
from inbox_helper.utils.redaction import redact

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat/search", dependencies=[Depends(RouteRateLimit("chat_search_post"))])
def chat_search(
    request: ChatSearchRequest,
    user_id: str = Depends(get_current_user_id),
    inbox: InboxRepository = Depends(get_inbox_repository),
    classifier: BucketClassifier = Depends(get_bucket_classifier),
) -> dict[str, Any]:
    """Rank the newest stored threads against a natural-language query."""
    limit = request.limit or SEARCH_DEFAULT_LIMIT
    try:
        threads = sort_by_recency(inbox.get_threads(user_id))[:SEARCH_CANDIDATE_LIMIT]
        matched_ids = classifier.search_relevant_threads(request.query, threads, limit)
    except Exception as e:
        log_event("api.chat_search.error", error=type(e).__name__, user_id=redact(user_id))
        raise ApiError(500, get_safe_error_detail(e, 500, context="Failed to search chat")) from e

    thread_by_id = {thread.id: thread for thread in threads}
    results = [thread_payload(thread_by_id[i]) for i in matched_ids if i in thread_by_id]

    return {
        "query": request.query,
        "totalCandidates": len(threads),
        "results": results,
    }
