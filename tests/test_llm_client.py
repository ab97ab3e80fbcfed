"""Tests for the LLM client -- Anthropic Messages API, blocking and streaming."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from poolside.clients import llm_client
from poolside.clients.llm_client import (
    ANTHROPIC_MESSAGES_URL,
    _compute_wait,
    _retry_on_transient,
    chat_anthropic,
    stream_anthropic,
)
from poolside.errors import LLMAPIError

_MESSAGES = [{"role": "user", "content": "Hi"}]


def _mock_response(data, status_code=200, headers=None):
    return httpx.Response(
        status_code,
        json=data,
        headers=headers,
        request=httpx.Request("POST", ANTHROPIC_MESSAGES_URL),
    )


class _FakeStream:
    """Stand-in for the ``client.stream(...)`` async context manager."""

    def __init__(self, status_code=200, lines=(), body=b"", headers=None):
        self.status_code = status_code
        self.headers = headers or {}
        self._lines = list(lines)
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def aread(self):
        return self._body

    async def aiter_lines(self):
        for line in self._lines:
            if isinstance(line, Exception):
                raise line
            yield line


def _sse_delta(text: str) -> str:
    return "data: " + json.dumps({
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    })


@pytest.fixture()
def mock_client():
    client = AsyncMock()
    with patch.object(llm_client, "_get_client", return_value=client):
        yield client


@pytest.fixture()
def stream_client():
    client = MagicMock()
    with patch.object(llm_client, "_get_client", return_value=client):
        yield client


# ---------------------------------------------------------------------------
# chat_anthropic
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_anthropic_success(mock_client):
    """Successful chat returns joined text, usage and stop_reason."""
    mock_client.post.return_value = _mock_response({
        "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
        "usage": {"input_tokens": 10, "output_tokens": 20},
        "stop_reason": "end_turn",
    })

    result = await chat_anthropic(
        api_key="test-key",
        model="test-sonnet",
        system_prompt="You are helpful.",
        messages=_MESSAGES,
        max_tokens=512,
    )

    assert result == {
        "text": "Hello there",
        "usage": {"input_tokens": 10, "output_tokens": 20},
        "stop_reason": "end_turn",
    }
    kwargs = mock_client.post.call_args.kwargs
    assert kwargs["headers"]["x-api-key"] == "test-key"
    assert kwargs["headers"]["anthropic-version"] == "2023-06-01"
    assert kwargs["json"] == {
        "model": "test-sonnet",
        "max_tokens": 512,
        "system": "You are helpful.",
        "messages": _MESSAGES,
    }


@pytest.mark.asyncio
async def test_chat_anthropic_with_tools_returns_raw(mock_client):
    raw = {
        "content": [{"type": "tool_use", "id": "t1", "name": "read_file", "input": {"path": "a"}}],
        "stop_reason": "tool_use",
    }
    mock_client.post.return_value = _mock_response(raw)
    tools = [{"name": "read_file", "input_schema": {"type": "object"}}]

    result = await chat_anthropic("k", "m", "sys", _MESSAGES, tools=tools)

    assert result == raw
    assert mock_client.post.call_args.kwargs["json"]["tools"] == tools


@pytest.mark.asyncio
async def test_chat_anthropic_client_error_not_retried(mock_client):
    mock_client.post.return_value = _mock_response(
        {"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}},
        status_code=401,
    )

    with pytest.raises(LLMAPIError) as exc_info:
        await chat_anthropic("bad", "m", "sys", _MESSAGES)

    assert exc_info.value.status_code == 401
    assert "invalid x-api-key" in str(exc_info.value)
    assert mock_client.post.await_count == 1


@pytest.mark.asyncio
async def test_chat_anthropic_retries_overloaded_then_succeeds(mock_client):
    mock_client.post.side_effect = [
        _mock_response({"error": {"message": "Overloaded"}}, status_code=529),
        _mock_response({"content": [{"type": "text", "text": "ok"}]}),
    ]

    result = await chat_anthropic("k", "m", "sys", _MESSAGES)

    assert result["text"] == "ok"
    assert mock_client.post.await_count == 2


@pytest.mark.asyncio
async def test_chat_anthropic_rate_limit_exhausts_retries(mock_client):
    mock_client.post.return_value = _mock_response(
        {"error": {"message": "rate limited"}}, status_code=429,
    )

    with pytest.raises(LLMAPIError) as exc_info:
        await chat_anthropic("k", "m", "sys", _MESSAGES)

    assert exc_info.value.status_code == 429
    # LLM_MAX_RETRIES=2 in tests -> three attempts
    assert mock_client.post.await_count == 3


@pytest.mark.asyncio
async def test_chat_anthropic_timeout_becomes_llm_error(mock_client):
    mock_client.post.side_effect = httpx.ReadTimeout("slow")

    with pytest.raises(LLMAPIError) as exc_info:
        await chat_anthropic("k", "m", "sys", _MESSAGES)

    assert exc_info.value.status_code == 502
    assert exc_info.value.upstream_status == 504


# ---------------------------------------------------------------------------
# Retry helpers
# ---------------------------------------------------------------------------


def test_compute_wait_prefers_retry_after(monkeypatch):
    monkeypatch.setattr(llm_client.settings, "LLM_RETRY_MAX_WAIT", 30.0)
    resp = _mock_response({}, status_code=429, headers={"retry-after": "7"})
    assert _compute_wait(resp, 0) == 7.0


def test_compute_wait_backoff_is_capped(monkeypatch):
    monkeypatch.setattr(llm_client.settings, "LLM_RETRY_MAX_WAIT", 5.0)
    assert _compute_wait(None, 0) == 2.0
    assert _compute_wait(None, 5) == 5.0


@pytest.mark.asyncio
async def test_retry_on_transient_connect_error_recovers():
    factory = AsyncMock(side_effect=[httpx.ConnectError("down"), "ok"])
    assert await _retry_on_transient(factory, max_retries=1) == "ok"
    assert factory.await_count == 2


@pytest.mark.asyncio
async def test_retry_on_transient_gives_up():
    factory = AsyncMock(side_effect=httpx.ConnectError("down"))
    with pytest.raises(LLMAPIError, match="unreachable"):
        await _retry_on_transient(factory, max_retries=1)
    assert factory.await_count == 2


# ---------------------------------------------------------------------------
# stream_anthropic
# ---------------------------------------------------------------------------


async def _collect(gen) -> list[str]:
    return [chunk async for chunk in gen]


@pytest.mark.asyncio
async def test_stream_yields_text_deltas(stream_client):
    stream_client.stream.return_value = _FakeStream(lines=[
        "event: message_start",
        'data: {"type": "message_start", "message": {"usage": {"input_tokens": 5}}}',
        "",
        _sse_delta("Hel"),
        _sse_delta("lo"),
        'data: {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}}',
        'data: {"type": "message_stop"}',
    ])

    chunks = await _collect(stream_anthropic("k", "m", "sys", _MESSAGES))

    assert chunks == ["Hel", "lo"]
    call = stream_client.stream.call_args
    assert call.args == ("POST", ANTHROPIC_MESSAGES_URL)
    assert call.kwargs["json"]["stream"] is True


@pytest.mark.asyncio
async def test_stream_retries_before_first_chunk(stream_client):
    stream_client.stream.side_effect = [
        _FakeStream(status_code=529, body=b'{"error": {"message": "Overloaded"}}'),
        _FakeStream(lines=[_sse_delta("ok")]),
    ]

    assert await _collect(stream_anthropic("k", "m", "sys", _MESSAGES)) == ["ok"]
    assert stream_client.stream.call_count == 2


@pytest.mark.asyncio
async def test_stream_client_error_raises(stream_client):
    stream_client.stream.return_value = _FakeStream(
        status_code=401, body=b'{"error": {"message": "invalid x-api-key"}}',
    )

    with pytest.raises(LLMAPIError) as exc_info:
        await _collect(stream_anthropic("k", "m", "sys", _MESSAGES))

    assert exc_info.value.status_code == 401
    assert stream_client.stream.call_count == 1


@pytest.mark.asyncio
async def test_stream_failure_after_first_chunk_is_not_retried(stream_client):
    stream_client.stream.return_value = _FakeStream(
        lines=[_sse_delta("partial"), httpx.ReadError("connection reset")],
    )

    received: list[str] = []
    with pytest.raises(LLMAPIError):
        async for chunk in stream_anthropic("k", "m", "sys", _MESSAGES):
            received.append(chunk)

    assert received == ["partial"]
    assert stream_client.stream.call_count == 1


@pytest.mark.asyncio
async def test_stream_error_event_raises(stream_client):
    stream_client.stream.return_value = _FakeStream(lines=[
        'data: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}',
    ])

    with pytest.raises(LLMAPIError, match="Overloaded"):
        await _collect(stream_anthropic("k", "m", "sys", _MESSAGES))
