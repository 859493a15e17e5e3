"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
PACKAGE_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("INBOX_HELPER_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Google OAuth client (installed-app flow + token refresh)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_CLIENT_SECRETS_FILE = os.getenv(
    "INBOX_HELPER_CLIENT_SECRETS", str(PROJECT_ROOT / "credentials" / "client_secret.json")
)
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
GMAIL_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/gmail.readonly",
]

# Auth
AUTH_REQUIRED = os.getenv("INBOX_HELPER_AUTH_REQUIRED", "false").lower() == "true"
LOCAL_USER_ID = "local-user"

# LLM providers (both speak the OpenAI chat completions protocol)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("INBOX_HELPER_OPENAI_MODEL", "gpt-4o-mini")
XAI_API_KEY = os.getenv("XAI_API_KEY")
XAI_MODEL = os.getenv("INBOX_HELPER_XAI_MODEL", "grok-3-mini")
XAI_BASE_URL = os.getenv("INBOX_HELPER_XAI_BASE_URL", "https://api.x.ai/v1")
LLM_PROVIDER_ORDER = [
    name.strip().lower()
    for name in os.getenv("INBOX_HELPER_LLM_PROVIDERS", "xai,openai").split(",")
    if name.strip()
]
LLM_TEMPERATURE = float(os.getenv("INBOX_HELPER_LLM_TEMPERATURE", "0.0"))
LLM_MAX_TOKENS = int(os.getenv("INBOX_HELPER_LLM_MAX_TOKENS", "2048"))

# CORS
EXTRA_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("INBOX_HELPER_ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
