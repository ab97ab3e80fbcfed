"""Credential dependency -- extracts the provider token from the Authorization header.

The mobile client completes the Microsoft / GitHub OAuth flow itself and
sends the resulting provider access token as a bearer credential.  The
token is handed straight to the upstream API; it is never stored.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from poolside.errors import AuthError

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_provider_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """Return the bearer token or raise 401 if it is missing."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Access token required")
    return credentials.credentials
