"""Error envelopes for the dashboard API.

Every error body is {"error": ...}; Gmail credential problems add
"needsGoogleAuth": true so the client knows to reconnect.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter
from inbox_helper.utils.redaction import redact

logger = get_logger(__name__)

GOOGLE_NOT_CONNECTED = "Google account is not connected"
GMAIL_AUTH_EXPIRED = "Gmail authorization expired. Please sign in again."


class ApiError(Exception):
    """Raised by routes to return a specific status and JSON body."""

    def __init__(
        self,
        status_code: int,
        error: Any,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ) -> None:
        super().__init__(str(error))
        self.status_code = status_code
        self.payload = {"error": error, **extra}
        self.headers = headers


def google_auth_required(message: str = GOOGLE_NOT_CONNECTED) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, message, needsGoogleAuth=True)


def flatten_validation_errors(errors: list[dict[str, Any]]) -> dict[str, Any]:
    """
    {"formErrors": [...], "fieldErrors": {field: [...]}}

    Errors on the body as a whole go to formErrors; everything else is keyed
    by its top-level field name.
    """
    form_errors: list[str] = []
    field_errors: dict[str, list[str]] = {}
    for err in errors:
        loc = list(err.get("loc", ()))
        # Only the leading source marker; a field may itself be named "query"
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        message = err.get("msg", "Invalid value")
        if not loc:
            form_errors.append(message)
        else:
            field_errors.setdefault(str(loc[0]), []).append(message)
    return {"formErrors": form_errors, "fieldErrors": field_errors}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.payload, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """400 with a flattened error map; input values are never echoed back."""
    logger.warning(
        "Validation error on %s: %s",
        redact(request.url.path),
        [(err.get("loc"), err.get("type")) for err in exc.errors()],
    )
    counter("api.validation_errors")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": flatten_validation_errors(list(exc.errors()))},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )
