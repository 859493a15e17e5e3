"""
User identity for API requests.

Single-user local installs send no Authorization header and act as
"local-user". When a bearer token is sent (or INBOX_HELPER_AUTH_REQUIRED is
set), it must be a Google access token; the Google account id becomes the
user id.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from cachetools import TTLCache
from fastapi import HTTPException, Request, status

from inbox_helper.config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_USERINFO_URL,
    LOCAL_USER_ID,
    is_production,
)
from inbox_helper.infrastructure import settings
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter
from inbox_helper.utils.redaction import redact

logger = get_logger(__name__)

GOOGLE_TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"

_CACHE_MAX_SIZE = 1000
_CACHE_TTL_SECONDS = 600  # shorter than Google's 1h access-token lifetime


@dataclass
class AuthenticatedUser:
    id: str
    email: str
    name: str | None = None


_token_cache: TTLCache[str, AuthenticatedUser] = TTLCache(
    maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Authentication service unavailable",
    )


async def verify_google_token(token: str) -> AuthenticatedUser:
    """
    Validate a Google access token and resolve the account behind it.

    Raises:
        HTTPException: 401 for invalid/foreign tokens, 503 if Google is unreachable
    """
    if token in _token_cache:
        return _token_cache[token]

    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            token_response = await client.get(
                GOOGLE_TOKEN_INFO_URL, params={"access_token": token}
            )
        except httpx.RequestError as e:
            logger.error("Token validation request failed: %s", e)
            raise _unavailable() from e

        if token_response.status_code != 200:
            counter("auth.invalid_token")
            raise _unauthorized("Invalid or expired token")

        token_info = token_response.json()
        if GOOGLE_CLIENT_ID:
            if token_info.get("aud") != GOOGLE_CLIENT_ID:
                logger.warning("Token audience mismatch for %s", redact(token_info.get("aud")))
                raise _unauthorized("Token not issued for this application")
        elif is_production():
            logger.error("GOOGLE_CLIENT_ID not configured in production")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: OAuth client ID not set",
            )

        try:
            userinfo_response = await client.get(
                GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.RequestError as e:
            logger.error("Failed to get user info: %s", e)
            raise _unavailable() from e

        if userinfo_response.status_code != 200:
            raise _unauthorized("Failed to retrieve user information")

        userinfo = userinfo_response.json()

    user = AuthenticatedUser(
        id=userinfo["sub"],
        email=userinfo.get("email", ""),
        name=userinfo.get("name"),
    )
    _token_cache[token] = user
    logger.info("Authenticated user %s (cache size: %d)", redact(user.id), len(_token_cache))
    return user


def _extract_bearer_token(authorization: str) -> str:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format. Expected: Bearer <token>")
    return parts[1]


async def get_current_user_id(request: Request) -> str:
    """
    FastAPI dependency returning the caller's user id.

    Usage:
        @router.get("/api/threads")
        def get_threads(user_id: str = Depends(get_current_user_id)):
            ...
    """
    authorization = request.headers.get("Authorization")
    if not authorization:
        if settings.AUTH_REQUIRED:
            raise _unauthorized("Missing authorization header")
        return LOCAL_USER_ID

    user = await verify_google_token(_extract_bearer_token(authorization))
    return user.id


def clear_token_cache() -> None:
    _token_cache.clear()
