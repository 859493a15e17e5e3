"""Shared LLM call with retry logic.

Provider SDK errors are converted to TimeoutError / ConnectionError /
OSError so the retry policy does not depend on which provider answered.
Anything else (bad request, auth) is raised as-is and not retried; the
caller moves on to the next provider.
"""

from __future__ import annotations

import json
import re
from typing import Any

from openai import (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from inbox_helper.config import LLM_MAX_RETRIES
from inbox_helper.llm.providers import ChatProvider
from inbox_helper.observability.logging import get_logger
from inbox_helper.observability.telemetry import counter, time_block

logger = get_logger(__name__)


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def call_llm(provider: ChatProvider, system: str, prompt: str, counter_prefix: str = "llm") -> str:
    """Call a provider with retry and SDK exception conversion.

    Raises:
        TimeoutError: Request timed out (retried)
        ConnectionError: Connection failure or 5xx (retried)
        OSError: Rate limited (retried)
    """
    try:
        with time_block(f"{counter_prefix}.{provider.name}.latency"):
            return provider.complete(system, prompt)
    except APITimeoutError as e:
        counter(f"{counter_prefix}.{provider.name}.timeout")
        logger.warning("%s call timed out", provider.name)
        raise TimeoutError(f"{provider.name} call timed out") from e
    except APIConnectionError as e:
        counter(f"{counter_prefix}.{provider.name}.connection_error")
        logger.warning("%s connection failed, will retry: %s", provider.name, e)
        raise ConnectionError(f"{provider.name} connection failed: {e}") from e
    except RateLimitError as e:
        counter(f"{counter_prefix}.{provider.name}.rate_limited")
        logger.warning("%s rate limited (429), will retry", provider.name)
        raise OSError(f"{provider.name} rate limited") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.{provider.name}.internal_error")
        logger.warning("%s internal error, will retry: %s", provider.name, e)
        raise ConnectionError(f"{provider.name} internal error: {e}") from e


def extract_json(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output.

    Handles markdown code fences, prose around the object, and trailing commas.

    Raises:
        ValueError: If no JSON object can be recovered
    """
    cleaned = re.sub(r"```(?:json)?\s*", "", text or "").strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ValueError("No JSON object in model response") from None
        candidate = match.group(0)
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            repaired = re.sub(r",\s*([\}\]])", r"\1", candidate)
            try:
                parsed = json.loads(repaired)
            except json.JSONDecodeError as e:
                raise ValueError(f"Unparseable JSON in model response: {e}") from e
            logger.info("JSON repair succeeded (trailing commas removed)")

    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed
