"""Exception handlers that turn every failure into the JSON error body.

The phone only ever sees ``{"error", "detail", "request_id"}``.  Full
tracebacks stay in the server log.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from poolside.errors import PoolsideError, UpstreamError, format_error_response

logger = logging.getLogger(__name__)

# pydantic error members that are not JSON-serialisable or leak the payload
_HIDDEN_ERROR_KEYS = ("ctx", "input", "url")


def _request_id(request: Request) -> str:
    """ID set by :class:`RequestIDMiddleware`, or a fresh one on bare test apps."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _respond(
    request: Request,
    status_code: int,
    error: str,
    detail: object = None,
    headers: dict | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=error, detail=detail, request_id=_request_id(request),
        ),
        headers=headers,
    )


def jsonable_errors(errors: list) -> list:
    """Strip the members of pydantic validation errors the client has no use for."""
    return [
        {key: value for key, value in err.items() if key not in _HIDDEN_ERROR_KEYS}
        for err in errors
    ]


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method, request.url.path, _request_id(request),
        exc_info=exc,
    )
    return _respond(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "Internal server error",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Starlette ``HTTPException`` (including unknown routes) keeps its status."""
    message = str(exc.detail) if exc.detail else "Error"
    logger.warning(
        "HTTP %s on %s %s: %s", exc.status_code, request.method, request.url.path, message,
    )
    return _respond(
        request, exc.status_code, message, message, headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_errors(exc.errors())
    logger.warning(
        "Invalid request body on %s %s: %s", request.method, request.url.path, errors,
    )
    return _respond(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors,
    )


async def poolside_error_handler(request: Request, exc: PoolsideError) -> JSONResponse:
    """Domain errors carry their own status.  Upstream failures are logged with the provider's status."""
    if isinstance(exc, UpstreamError):
        logger.warning(
            "%s (upstream %s -> %s) on %s %s: %s",
            type(exc).__name__, exc.upstream_status, exc.status_code,
            request.method, request.url.path, exc,
        )
    return _respond(request, exc.status_code, str(exc), str(exc))


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Stray ``ValueError``: 404 when the message says "not found", else 400."""
    detail = str(exc)
    if "not found" in detail.lower():
        return _respond(request, status.HTTP_404_NOT_FOUND, "Not Found", detail)
    return _respond(request, status.HTTP_400_BAD_REQUEST, "Bad Request", detail)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on *app*, most specific first."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PoolsideError, poolside_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, value_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)  # type: ignore[arg-type]
