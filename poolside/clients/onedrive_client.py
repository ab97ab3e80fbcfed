"""OneDrive client -- Microsoft Graph drive items addressed by path."""

from urllib.parse import quote

import httpx

from poolside.errors import GraphAPIError

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
_DRIVE_ROOT = "/me/drive/root"

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for Graph API calls.

    ``follow_redirects`` is required: ``/content`` answers with a 302 to a
    pre-authenticated download URL.
    """
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _auth_headers(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def normalize_path(path: str | None) -> str:
    """Return *path* with a single leading slash and no trailing slash.

    ``None``, ``""`` and ``"/"`` all mean the drive root.
    """
    cleaned = (path or "").strip().strip("/")
    return f"/{cleaned}" if cleaned else "/"


def join_path(parent: str, name: str) -> str:
    """Join a drive folder path and a child name without doubling slashes."""
    parent = normalize_path(parent)
    name = name.strip("/")
    return f"/{name}" if parent == "/" else f"{parent}/{name}"


def _item_url(path: str, suffix: str = "") -> str:
    """Build the Graph URL for the item at *path*.

    ``suffix`` is a relationship such as ``children`` or ``content``.
    """
    path = normalize_path(path)
    if path == "/":
        url = f"{GRAPH_API_BASE}{_DRIVE_ROOT}"
        return f"{url}/{suffix}" if suffix else url
    encoded = quote(path, safe="/")
    url = f"{GRAPH_API_BASE}{_DRIVE_ROOT}:{encoded}"
    return f"{url}:/{suffix}" if suffix else url


def _raise_for_graph_error(response: httpx.Response, action: str) -> None:
    """Raise :class:`GraphAPIError` for any non-2xx Graph response."""
    if response.status_code < 400:
        return
    message = response.reason_phrase or "Graph request failed"
    try:
        body = response.json()
        message = body.get("error", {}).get("message") or message
    except ValueError:
        pass
    raise GraphAPIError(f"{action}: {message}", status_code=response.status_code)


async def _send(method: str, url: str, action: str, **kwargs) -> httpx.Response:
    """Issue one Graph request; transport failures become :class:`GraphAPIError`.

    A timeout is reported as 504, anything else that never reached Graph as 502.
    """
    client = _get_client()
    try:
        response = await getattr(client, method)(url, **kwargs)
    except httpx.TimeoutException as exc:
        raise GraphAPIError(f"{action}: Microsoft Graph timed out", status_code=504) from exc
    except httpx.TransportError as exc:
        raise GraphAPIError(
            f"{action}: Microsoft Graph unreachable ({type(exc).__name__})", status_code=502,
        ) from exc
    _raise_for_graph_error(response, action)
    return response


# ── Drive operations ─────────────────────────────────────────────────────────


async def list_children(access_token: str, path: str = "/") -> list[dict]:
    """List the raw Graph items directly under the folder at *path*."""
    response = await _send(
        "get",
        _item_url(path, "children"),
        f"Failed to list {normalize_path(path)}",
        headers=_auth_headers(access_token),
    )
    return response.json().get("value", [])


async def get_item(access_token: str, path: str = "/") -> dict:
    """Fetch raw metadata for the item (file or folder) at *path*."""
    response = await _send(
        "get",
        _item_url(path),
        f"Failed to get {normalize_path(path)}",
        headers=_auth_headers(access_token),
    )
    return response.json()


async def get_content(access_token: str, path: str) -> str:
    """Download a file and return it decoded as UTF-8 text."""
    response = await _send(
        "get",
        _item_url(path, "content"),
        f"Failed to fetch file: {normalize_path(path)}",
        headers=_auth_headers(access_token),
    )
    return response.content.decode("utf-8", errors="replace")


async def put_content(access_token: str, path: str, content: str) -> dict:
    """Create or replace the file at *path*.  Returns the raw item."""
    response = await _send(
        "put",
        _item_url(path, "content"),
        f"Failed to write {normalize_path(path)}",
        content=content.encode("utf-8"),
        headers={
            **_auth_headers(access_token),
            "Content-Type": "text/plain",
        },
    )
    return response.json()


async def delete_item(access_token: str, path: str) -> None:
    """Delete the item at *path* (moved to the OneDrive recycle bin)."""
    await _send(
        "delete",
        _item_url(path),
        f"Failed to delete {normalize_path(path)}",
        headers=_auth_headers(access_token),
    )


async def create_folder(access_token: str, parent_path: str, name: str) -> dict:
    """Create a folder named *name* under *parent_path*.  Returns the raw item."""
    response = await _send(
        "post",
        _item_url(parent_path, "children"),
        f"Failed to create folder {name}",
        json={"name": name, "folder": {}},
        headers=_auth_headers(access_token),
    )
    return response.json()
