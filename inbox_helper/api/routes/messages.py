"""Single-message viewing and new-mail polling."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from inbox_helper.api.dependencies import (
    GmailClientFactory,
    get_gmail_factory,
    get_token_repository,
    read_stored_token,
)
from inbox_helper.api.errors import GMAIL_AUTH_EXPIRED, ApiError, google_auth_required
from inbox_helper.api.middleware.rate_limit import RouteRateLimit
from inbox_helper.api.middleware.user_auth import get_current_user_id
from inbox_helper.api.models import CheckNewRequest, MessageDetailRequest
from inbox_helper.config import MAX_KNOWN_IDS
from inbox_helper.gmail.client import GmailAuthError, GmailFetchError
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.storage.token_repository import TokenRepository
from inbox_helper.utils.redaction import redact

router = APIRouter(prefix="/api/messages", tags=["messages"])


def _nothing_new(**extra: Any) -> dict[str, Any]:
    return {"hasNew": False, "newCount": 0, "latestIds": [], **extra}


@router.post("/detail", dependencies=[Depends(RouteRateLimit("message_detail_post"))])
def message_detail(
    request: MessageDetailRequest,
    user_id: str = Depends(get_current_user_id),
    tokens: TokenRepository = Depends(get_token_repository),
    gmail_factory: GmailClientFactory = Depends(get_gmail_factory),
) -> dict[str, Any]:
    try:
        token = read_stored_token(tokens, user_id)
        if token is None:
            raise google_auth_required()
        detail = gmail_factory(user_id, token, tokens).fetch_message_detail(request.id)
    except GmailAuthError as e:
        raise google_auth_required(GMAIL_AUTH_EXPIRED) from e
    except GmailFetchError as e:
        log_event("api.message_detail.error", status=e.status, message_id=redact(request.id))
        raise ApiError(e.status if e.status == 404 else 500, str(e)) from e

    counter("api.message_detail.count")
    return detail.model_dump(by_alias=True)


@router.post(
    "/check-new", dependencies=[Depends(RouteRateLimit("messages_check_new_post"))]
)
def check_new(
    request: CheckNewRequest,
    user_id: str = Depends(get_current_user_id),
    tokens: TokenRepository = Depends(get_token_repository),
    gmail_factory: GmailClientFactory = Depends(get_gmail_factory),
) -> dict[str, Any]:
    """Report whether Gmail has messages the client has not seen yet."""
    try:
        token = read_stored_token(tokens, user_id)
        if token is None:
            return _nothing_new(needsGoogleAuth=True)
        latest_ids = gmail_factory(user_id, token, tokens).list_recent_message_ids(MAX_KNOWN_IDS)
    except GmailAuthError:
        # Pollers always get 200; needsGoogleAuth tells them to reconnect
        log_event("api.check_new.gmail_auth_expired", user_id=redact(user_id))
        return _nothing_new(needsGoogleAuth=True, error=GMAIL_AUTH_EXPIRED)
    except GmailFetchError as e:
        raise ApiError(500, str(e)) from e

    known = set(request.known_ids)
    new_count = sum(1 for message_id in latest_ids if message_id not in known)
    return {"hasNew": new_count > 0, "newCount": new_count, "latestIds": latest_ids}
