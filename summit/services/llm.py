"""
Chat completion client (OpenAI-compatible API).

Features:
  - Retry with exponential backoff + jitter (handles 429, 500, 502, 503, 504)
  - Reusable client (connection pooling)
  - JSON replies, with ``` fences stripped
  - Structured logging

Callers that need a guaranteed answer (the suggestion engine) catch LLMError
and fall back to deterministic logic.
"""

import asyncio
import json
import logging
import random
import re
import time
from typing import Any, Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The completion service is unavailable or returned something unusable."""


# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5, read=20, write=10, pool=5),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


def is_configured() -> bool:
    return bool(get_settings().openai_api_key)


# ── Retry logic ──────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 2
BASE_DELAY = 0.5
MAX_DELAY = 4.0


async def _retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Execute request with exponential backoff + jitter."""
    last_exc: Optional[Exception] = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            resp = await client.request(method, url, **kwargs)

            if resp.status_code not in RETRYABLE_STATUS:
                if resp.status_code >= 400:
                    logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
                resp.raise_for_status()
                return resp

            retry_after = resp.headers.get("retry-after")
            delay = float(retry_after) if retry_after else min(
                MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.5)
            )
            logger.warning(
                "LLM %d (attempt %d/%d), retrying in %.1fs",
                resp.status_code, attempt + 1, MAX_RETRIES + 1, delay,
            )
            last_exc = httpx.HTTPStatusError(
                f"{resp.status_code}", request=resp.request, response=resp
            )

        except httpx.HTTPStatusError:
            raise  # Non-retryable HTTP errors
        except httpx.TransportError as e:
            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.5))
            logger.warning(
                "LLM transport error (attempt %d/%d): %s, retrying in %.1fs",
                attempt + 1, MAX_RETRIES + 1, e, delay,
            )
            last_exc = e

        if attempt < MAX_RETRIES:
            await asyncio.sleep(delay)

    raise last_exc or RuntimeError("LLM request failed after retries")


# ── Main chat function ───────────────────────────────────────────────

async def chat(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> dict:
    """
    Chat completion with retry.
    Returns the full API response as dict. Raises LLMError on any failure.
    """
    settings = get_settings()
    if not settings.openai_api_key:
        raise LLMError("No API key for LLM provider. Set OPENAI_API_KEY.")

    payload: dict[str, Any] = {
        "model": model or settings.default_llm_model,
        "messages": messages,
        "temperature": temperature if temperature is not None else settings.default_llm_temperature,
        "max_tokens": max_tokens or settings.default_llm_max_tokens,
    }

    url = f"{settings.openai_base_url.rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }

    start = time.monotonic()
    try:
        resp = await _retry_request(_get_client(), "POST", url, json=payload, headers=headers)
        data = resp.json()
    except (httpx.HTTPError, ValueError, RuntimeError) as e:
        logger.error("LLM failed after %.1fs: %s", time.monotonic() - start, e)
        raise LLMError(str(e)) from e

    usage = data.get("usage", {})
    logger.info(
        "LLM chat: %dms | in=%d out=%d tokens | model=%s",
        int((time.monotonic() - start) * 1000),
        usage.get("prompt_tokens", 0),
        usage.get("completion_tokens", 0),
        payload["model"],
    )
    return data


# ── Convenience functions ────────────────────────────────────────────

async def chat_simple(
    prompt: str,
    system: str = "",
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: int = 300,
) -> str:
    """Send a prompt, get a string back."""
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    response = await chat(
        messages=messages, model=model,
        temperature=temperature, max_tokens=max_tokens,
    )
    try:
        return response["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise LLMError(f"Unexpected completion shape: {e}") from e


_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def extract_json(content: str) -> dict:
    """Parse a JSON object from a completion, tolerating a ```json fence."""
    text = content.strip()
    if text.startswith("```"):
        text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text))
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMError(f"Completion was not JSON: {text[:120]!r}") from e
    if not isinstance(data, dict):
        raise LLMError("Completion JSON was not an object")
    return data


async def chat_json(
    prompt: str,
    system: str,
    temperature: float = 0.7,
    max_tokens: int = 300,
) -> dict:
    """chat_simple() + extract_json()."""
    content = await chat_simple(prompt, system=system, temperature=temperature, max_tokens=max_tokens)
    return extract_json(content)
