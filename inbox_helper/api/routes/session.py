"""Session endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from inbox_helper.api.dependencies import get_token_repository
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.observability.telemetry import log_event
from inbox_helper.storage.token_repository import TokenRepository
from inbox_helper.utils.redaction import redact

router = APIRouter(prefix="/api", tags=["session"])


@router.post("/logout", dependencies=[Depends(RouteRateLimit("logout_post"))])
def logout(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenRepository = Depends(get_token_repository),
) -> dict[str, Any]:
    """Forget the stored Google token; stored threads and buckets are kept."""
    tokens.delete_token(user_id)
    log_event("api.logout", user_id=redact(user_id))
    return {"ok": True}
