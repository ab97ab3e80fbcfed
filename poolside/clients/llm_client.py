"""LLM client -- Anthropic Messages API over raw httpx (blocking + streaming)."""

import asyncio
import json as _json
import logging
from typing import AsyncIterator

import httpx

from poolside.config import settings
from poolside.errors import LLMAPIError

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

RETRY_BACKOFF_BASE = 2.0  # seconds -- exponential: 2, 4, 8, ...
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 529})


def _compute_wait(response: httpx.Response | None, attempt: int) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header.  Falls back to exponential backoff.
    Both are capped at ``LLM_RETRY_MAX_WAIT``.
    """
    cap = settings.LLM_RETRY_MAX_WAIT
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), cap)
            except (ValueError, TypeError):
                pass
    return min(RETRY_BACKOFF_BASE ** (attempt + 1), cap)


def _error_message(status_code: int, body: bytes) -> str:
    """Extract Anthropic's ``error.message`` from an error body."""
    text = body.decode("utf-8", errors="replace")
    try:
        err = _json.loads(text).get("error", {})
        message = err.get("message") or text
    except (ValueError, AttributeError):
        message = text
    return f"Anthropic API {status_code}: {message or 'request failed'}"


def _to_llm_error(exc: Exception) -> LLMAPIError:
    """Convert a terminal transport / status failure into :class:`LLMAPIError`."""
    if isinstance(exc, httpx.HTTPStatusError):
        return LLMAPIError(
            _error_message(exc.response.status_code, exc.response.content),
            status_code=exc.response.status_code,
        )
    if isinstance(exc, httpx.TimeoutException):
        return LLMAPIError("Anthropic API timed out", status_code=504)
    return LLMAPIError(f"Anthropic API unreachable: {type(exc).__name__}")


async def _retry_on_transient(coro_factory, *, max_retries: int | None = None):
    """Retry a coroutine factory on transient HTTP / timeout errors.

    ``coro_factory`` is a zero-arg callable that returns a new awaitable each
    time (so we can retry fresh).  Retryable statuses are signalled by the
    factory raising ``httpx.HTTPStatusError``; once retries are exhausted the
    failure surfaces as :class:`LLMAPIError`.
    """
    if max_retries is None:
        max_retries = settings.LLM_MAX_RETRIES
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            if attempt >= max_retries:
                raise _to_llm_error(exc) from exc
            wait = _compute_wait(None, attempt)
            logger.warning(
                "LLM request %s (attempt %d/%d), retrying in %.1fs",
                type(exc).__name__, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code not in _RETRYABLE_STATUS_CODES or attempt >= max_retries:
                raise _to_llm_error(exc) from exc
            wait = _compute_wait(exc.response, attempt)
            logger.warning(
                "LLM request %d (attempt %d/%d), retrying in %.1fs",
                exc.response.status_code, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
    raise LLMAPIError("Anthropic API retries exhausted")  # pragma: no cover


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


def _anthropic_headers(api_key: str) -> dict:
    """Return standard Anthropic API headers."""
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


def _build_body(
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int,
    tools: list[dict] | None = None,
    stream: bool = False,
) -> dict:
    body: dict = {
        "model": model,
        "max_tokens": max_tokens,
        "system": system_prompt,
        "messages": messages,
    }
    if tools:
        body["tools"] = tools
    if stream:
        body["stream"] = True
    return body


async def chat_anthropic(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 4096,
    tools: list[dict] | None = None,
) -> dict:
    """Send a chat request to the Anthropic Messages API.

    When *tools* is provided the raw API response dict is returned so the
    caller can inspect ``stop_reason`` and ``content`` blocks for tool_use.
    Otherwise the response is simplified to
    ``{"text": ..., "usage": ..., "stop_reason": ...}``.

    Raises :class:`LLMAPIError` carrying the provider status on failure.
    """
    body = _build_body(model, system_prompt, messages, max_tokens, tools)

    async def _call():
        client = _get_client()
        response = await client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=_anthropic_headers(api_key),
            json=body,
        )
        if response.status_code >= 400:
            if response.status_code in _RETRYABLE_STATUS_CODES:
                raise httpx.HTTPStatusError(
                    f"Anthropic API {response.status_code}",
                    request=response.request,
                    response=response,
                )
            raise LLMAPIError(
                _error_message(response.status_code, response.content),
                status_code=response.status_code,
            )
        return response.json()

    data = await _retry_on_transient(_call)

    # If tools were provided, return the full response so the caller
    # can process tool_use blocks and the stop_reason.
    if tools:
        return data

    usage = data.get("usage", {})
    text_parts = [
        block.get("text", "")
        for block in data.get("content", [])
        if block.get("type") == "text"
    ]
    return {
        "text": "".join(text_parts),
        "usage": {
            "input_tokens": usage.get("input_tokens", 0),
            "output_tokens": usage.get("output_tokens", 0),
        },
        "stop_reason": data.get("stop_reason", "end_turn"),
    }


# ---------------------------------------------------------------------------
# Anthropic -- streaming
# ---------------------------------------------------------------------------


async def stream_anthropic(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 4096,
) -> AsyncIterator[str]:
    """Stream a chat request, yielding text deltas as they arrive.

    Transient failures are retried only until the first delta has been
    yielded; after that a failure is raised as :class:`LLMAPIError` so the
    caller can report it in-band.
    """
    body = _build_body(model, system_prompt, messages, max_tokens, stream=True)
    max_retries = settings.LLM_MAX_RETRIES
    started = False

    for attempt in range(max_retries + 1):
        can_retry = not started and attempt < max_retries
        try:
            client = _get_client()
            async with client.stream(
                "POST",
                ANTHROPIC_MESSAGES_URL,
                headers=_anthropic_headers(api_key),
                json=body,
            ) as response:
                if response.status_code >= 400:
                    error_body = await response.aread()
                    if response.status_code in _RETRYABLE_STATUS_CODES and can_retry:
                        wait = _compute_wait(response, attempt)
                        logger.warning(
                            "LLM stream %d (attempt %d/%d), retrying in %.1fs",
                            response.status_code, attempt + 1, max_retries + 1, wait,
                        )
                        await asyncio.sleep(wait)
                        continue
                    raise LLMAPIError(
                        _error_message(response.status_code, error_body),
                        status_code=response.status_code,
                    )

                async for raw_line in response.aiter_lines():
                    if not raw_line.startswith("data: "):
                        continue
                    try:
                        event = _json.loads(raw_line[6:])
                    except ValueError:
                        continue
                    event_type = event.get("type", "")

                    if event_type == "content_block_delta":
                        delta = event.get("delta", {})
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            started = True
                            yield delta["text"]
                    elif event_type == "error":
                        message = event.get("error", {}).get("message", "stream error")
                        raise LLMAPIError(f"Anthropic API stream error: {message}")
            return

        except (httpx.TimeoutException, httpx.TransportError) as exc:
            if started or attempt >= max_retries:
                raise _to_llm_error(exc) from exc
            wait = _compute_wait(None, attempt)
            logger.warning(
                "LLM stream %s (attempt %d/%d), retrying in %.1fs",
                type(exc).__name__, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
