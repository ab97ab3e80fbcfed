"""Access log: one ``METRIC | type=http_request | ...`` line per HTTP request.

Fields: method, path, status, wall_ms, auth, req_id, plus ``stream=sse``
for chat streams and ``error=`` (from the JSON error body) on 4xx/5xx.

Credentials are Graph / GitHub provider tokens, so only whether a bearer
header was sent is recorded, never the token.
"""

from __future__ import annotations

import json
import logging
import time

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("poolside.access")

_UNLOGGED_PREFIXES = ("/health", "/favicon.ico")
_MAX_ERROR_DETAIL = 200


class AccessLogMiddleware:
    """Pure ASGI so SSE responses stream through unbuffered."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "").startswith(_UNLOGGED_PREFIXES):
            await self.app(scope, receive, send)
            return

        request_headers = Headers(scope=scope)
        fields: dict[str, object] = {
            "method": scope.get("method", "?"),
            "path": scope.get("path", ""),
            "status": 0,
            "wall_ms": 0,
            "auth": "bearer" if request_headers.get("authorization", "").startswith("Bearer ") else "-",
            "req_id": scope.get("state", {}).get("request_id", "-"),
        }
        started = time.perf_counter()

        async def observe(message: Message) -> None:
            if message["type"] == "http.response.start":
                fields["status"] = message.get("status", 0)
                content_type = Headers(raw=message.get("headers", [])).get("content-type", "")
                if content_type.startswith("text/event-stream"):
                    fields["stream"] = "sse"
            elif (
                message["type"] == "http.response.body"
                and fields["status"] >= 400
                and "error" not in fields
            ):
                detail = _error_detail(message.get("body", b""))
                if detail:
                    fields["error"] = detail
            await send(message)

        try:
            await self.app(scope, receive, observe)
        except Exception:
            # nothing reached the client yet
            if not fields["status"]:
                fields["status"] = 500
            raise
        finally:
            fields["wall_ms"] = f"{(time.perf_counter() - started) * 1000:.0f}"
            _log(fields)


def _error_detail(body: bytes) -> str:
    """Short message from a JSON error body; empty for anything else."""
    if not body:
        return ""
    try:
        parsed = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(parsed, dict):
        return ""
    detail = parsed.get("detail", parsed.get("error", ""))
    # "|" separates METRIC fields
    return str(detail)[:_MAX_ERROR_DETAIL].replace("|", "/")


def _log(fields: dict[str, object]) -> None:
    line = " | ".join(
        ["METRIC | type=http_request", *(f"{key}={value}" for key, value in fields.items())]
    )
    status_code = int(fields["status"])
    if status_code >= 500:
        logger.error(line)
    elif status_code >= 400:
        logger.warning(line)
    else:
        logger.info(line)
