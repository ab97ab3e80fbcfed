"""Request tracing for the Poolside Code API.

``RequestIDMiddleware`` tags each HTTP request with an ID that ends up in
the access log, in every error body and in the ``X-Request-ID`` response
header.  It is plain ASGI so the chat SSE stream is never buffered.
"""

import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_CLIENT_ID_LENGTH = 128


def _client_request_id(scope: Scope) -> str | None:
    """Return the caller's request ID if it is short, printable ASCII."""
    value = Headers(scope=scope).get(REQUEST_ID_HEADER, "")
    if 0 < len(value) <= _MAX_CLIENT_ID_LENGTH and value.isascii() and value.isprintable():
        return value
    return None


class RequestIDMiddleware:
    """Reuse the phone's ``X-Request-ID`` (so retries of one action share it) or mint a UUID-4."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _client_request_id(scope) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)
