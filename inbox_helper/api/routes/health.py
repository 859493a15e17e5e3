"""Health check and debug endpoints.

- /health - Service health and which LLM providers are configured
- /health/db - Schema validity and connection pool health
- /debug/stats - Counters and latency percentiles (no PII, disabled in production)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, HTTPException, status

from inbox_helper.config import APP_VERSION, is_production
from inbox_helper.infrastructure.database import get_pool_stats, validate_schema
from inbox_helper.llm.providers import get_providers
from inbox_helper.observability.telemetry import get_all_latency_stats, get_counters

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Does not call any provider; only reports which ones have credentials."""
    providers = [provider.name for provider in get_providers()]
    return {
        "status": "healthy",
        "service": "Inbox Helper API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": bool(providers),
            "providers": providers,
        },
    }


@router.get("/health/db")
def database_health() -> dict[str, Any]:
    """
    Database health check endpoint.

    Degraded when the schema is incomplete or pool usage exceeds 80%.
    """
    try:
        schema_valid = validate_schema()
        schema_error = None
    except ValueError as e:
        schema_valid = False
        schema_error = str(e)

    stats = get_pool_stats()
    pool_busy = stats["usage_percent"] > 80

    return {
        "status": "healthy" if schema_valid and not pool_busy else "degraded",
        "schema_valid": schema_valid,
        "schema_error": schema_error,
        "pool": stats,
        "warning": "Pool usage high" if pool_busy else None,
    }


@router.get("/debug/stats")
def debug_stats() -> dict[str, Any]:
    if is_production():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "counters": get_counters(),
        "latency": get_all_latency_stats(),
        "pool": get_pool_stats(),
    }
