"""Per-user, per-route rate limiting

Each protected route declares a dependency:

    @router.get("/threads", dependencies=[Depends(RouteRateLimit("threads_get"))])

Counters live in SQLite (fixed windows keyed by "route:user_id"), so limits
hold across API worker processes.
"""

from __future__ import annotations

import math

from fastapi import Depends, Response, status

from inbox_helper.api.errors import ApiError
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.config import RATE_LIMIT_WINDOW_MS, RATE_LIMITS
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.storage import now_ms
from inbox_helper.storage.rate_limit_repository import RateLimitRepository
from inbox_helper.utils.redaction import redact

logger = get_logger(__name__)


def get_rate_limit_repository() -> RateLimitRepository:
    return RateLimitRepository()


class RouteRateLimit:
    """Dependency enforcing RATE_LIMITS[route] requests per window for the current user."""

    def __init__(
        self, route: str, limit: int | None = None, window_ms: int = RATE_LIMIT_WINDOW_MS
    ) -> None:
        self.route = route
        self.limit = limit if limit is not None else RATE_LIMITS[route]
        self.window_ms = window_ms

    def __call__(
        self,
        response: Response,
        user_id: str = Depends(get_current_user_id),
        limiter: RateLimitRepository = Depends(get_rate_limit_repository),
    ) -> None:
        now = now_ms()
        decision = limiter.consume(f"{self.route}:{user_id}", self.limit, self.window_ms, now=now)
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(decision.reset_at // 1000),
        }

        if not decision.allowed:
            retry_after = max(1, math.ceil((decision.reset_at - now) / 1000))
            counter(f"rate_limit.{self.route}.exceeded")
            log_event("rate_limit.exceeded", route=self.route, user_id=redact(user_id))
            raise ApiError(
                status.HTTP_429_TOO_MANY_REQUESTS,
                "Rate limit exceeded",
                headers={**headers, "Retry-After": str(retry_after)},
            )

        response.headers.update(headers)
