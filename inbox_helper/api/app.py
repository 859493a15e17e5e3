"""FastAPI server for the Inbox Helper dashboard"""

from __future__ import annotations

import sqlite3
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from inbox_helper.api.errors import (
    ApiError,
    api_error_handler,
    http_exception_handler,
    validation_exception_handler,
)
from inbox_helper.api.middleware.security_headers import SecurityHeadersMiddleware
from inbox_helper.api.routes.buckets import router as buckets_router
from inbox_helper.api.routes.chat import router as chat_router
from inbox_helper.api.routes.health import router as health_router
from inbox_helper.api.routes.messages import router as messages_router
from inbox_helper.api.routes.session import router as session_router
from inbox_helper.api.routes.threads import router as threads_router
from inbox_helper.config import API_HOST, API_PORT, APP_VERSION, DEBUG, EXTRA_ALLOWED_ORIGINS
from inbox_helper.infrastructure.database import init_database
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, log_event
from inbox_helper.utils.error_sanitizer import get_safe_error_detail

# Load environment variables from .env file
load_dotenv()

app = FastAPI(title="Inbox Helper API", version=APP_VERSION)

logger = get_logger(__name__)

app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    counter("api.unhandled_errors")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": get_safe_error_detail(exc, 500)},
    )


# CORS - the dashboard is served from these origins
ALLOWED_ORIGINS = list(EXTRA_ALLOWED_ORIGINS)

if DEBUG:
    ALLOWED_ORIGINS.extend(
        [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8000",
        ]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

app.add_middleware(SecurityHeadersMiddleware)

# Initialize database schema
try:
    logger.info("Initializing database schema...")
    init_database()
    logger.info("Database initialization complete")
except sqlite3.OperationalError as e:
    logger.critical("Database schema error: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e
except OSError as e:
    logger.critical("Database file could not be created: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e

app.include_router(health_router)
app.include_router(threads_router)
app.include_router(buckets_router)
app.include_router(chat_router)
app.include_router(messages_router)
app.include_router(session_router)

log_event("api.startup", service="inbox-helper", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "Inbox Helper API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "health_db": "/health/db",
            "threads": "/api/threads",
            "classify": "/api/classify",
            "buckets": "/api/buckets",
            "chat_search": "/api/chat/search",
            "message_detail": "/api/messages/detail",
            "check_new": "/api/messages/check-new",
            "logout": "/api/logout",
            "debug_stats": "/debug/stats",
        },
    }


def main() -> None:
    import uvicorn

    uvicorn.run("inbox_helper.api.app:app", host=API_HOST, port=API_PORT, reload=DEBUG)


if __name__ == "__main__":
    main()
