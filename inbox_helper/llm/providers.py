"""Chat-completion providers.

OpenAI and xAI both expose the OpenAI chat completions protocol, so one
client class covers both; xAI is reached through its base URL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from openai import OpenAI

from inbox_helper.config import (
    LLM_MAX_TOKENS,
    LLM_PROVIDER_ORDER,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_MODEL,
    XAI_API_KEY,
    XAI_BASE_URL,
    XAI_MODEL,
)
from inbox_helper.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatProvider:
    name: str
    model: str
    api_key: str
    base_url: str | None = None
    _client: OpenAI | None = field(default=None, init=False, repr=False)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            # Retries are handled by call_llm so backoff is uniform across providers
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=LLM_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def complete(self, system: str, prompt: str) -> str:
        """Run one JSON-mode chat completion and return the message text."""
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


def _build_provider(name: str) -> ChatProvider | None:
    if name == "openai" and OPENAI_API_KEY:
        return ChatProvider(name="openai", model=OPENAI_MODEL, api_key=OPENAI_API_KEY)
    if name == "xai" and XAI_API_KEY:
        return ChatProvider(
            name="xai", model=XAI_MODEL, api_key=XAI_API_KEY, base_url=XAI_BASE_URL
        )
    if name not in ("openai", "xai"):
        logger.warning("Ignoring unknown LLM provider %r", name)
    return None


@lru_cache(maxsize=1)
def get_providers() -> tuple[ChatProvider, ...]:
    """Configured providers in preference order; providers without a key are skipped."""
    providers = tuple(
        provider
        for name in LLM_PROVIDER_ORDER
        if (provider := _build_provider(name)) is not None
    )
    if not providers:
        logger.warning("No LLM provider configured; classification uses keyword heuristics")
    return providers
