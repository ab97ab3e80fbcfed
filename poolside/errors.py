"""Domain exception hierarchy for the Poolside Code backend.

Services and clients raise these instead of bare ``ValueError`` so that
the global exception handler can map them to the correct HTTP status
code without fragile string matching.
"""


class PoolsideError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(PoolsideError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(PoolsideError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class AuthError(PoolsideError):
    """Missing or rejected credentials (401/403)."""

    def __init__(self, message: str = "Not authorized", *, status_code: int = 401):
        super().__init__(message, status_code=status_code)


class RateLimitError(PoolsideError):
    """Too many requests (429)."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status_code=429)


class UpstreamError(PoolsideError):
    """A remote provider (Graph, GitHub, Anthropic) rejected or failed a call.

    ``status_code`` mirrors the provider's status when it is a client error
    the caller can act on (400, 401, 403, 404, 409, 422, 429); anything else is
    reported as 502.
    """

    _PASSTHROUGH = frozenset({400, 401, 403, 404, 409, 422, 429})

    def __init__(self, message: str = "Upstream service error", *, status_code: int = 502):
        self.upstream_status = status_code
        super().__init__(
            message,
            status_code=status_code if status_code in self._PASSTHROUGH else 502,
        )


class GraphAPIError(UpstreamError):
    """Microsoft Graph (OneDrive) request failed."""


class GitHubAPIError(UpstreamError):
    """GitHub REST / Git Data request failed."""


class LLMAPIError(UpstreamError):
    """Anthropic Messages API request failed."""


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
