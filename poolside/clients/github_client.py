"""GitHub API client -- repos, branches, trees, file contents, and Git Data writes."""

import base64
from urllib.parse import quote

import httpx
from cachetools import TTLCache

from poolside.errors import GitHubAPIError

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"

# ── Response caches (reduces GitHub API rate-limit pressure) ────────────────
# The repo picker is re-opened constantly on mobile; a short TTL keeps it
# snappy without hiding newly pushed repos for long.
# Key format: (access_token, page, per_page)

_repo_list_cache: TTLCache[tuple[str, int, int], list[dict]] = TTLCache(maxsize=200, ttl=60)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for GitHub API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=30.0)
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def clear_caches() -> None:
    """Drop every cached GitHub response."""
    _repo_list_cache.clear()


# ── Helpers ──────────────────────────────────────────────────────────────────


def _auth_headers(access_token: str) -> dict:
    """Return standard GitHub API auth headers."""
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }


def _raise_for_github_error(response: httpx.Response, fallback: str) -> None:
    """Raise :class:`GitHubAPIError` carrying GitHub's ``message`` on non-2xx."""
    if response.status_code < 400:
        return
    message = fallback
    try:
        message = response.json().get("message") or fallback
    except ValueError:
        pass
    raise GitHubAPIError(message, status_code=response.status_code)


def _repo_url(owner: str, repo: str, suffix: str) -> str:
    """Build a repo-scoped URL.  *suffix* must already be percent-encoded."""
    return f"{GITHUB_API_BASE}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/{suffix}"


def _quote_path(path: str) -> str:
    """Percent-encode a repo path or ref, keeping its slashes."""
    return quote(path, safe="/")


async def _send(method: str, url: str, fallback: str, **kwargs) -> httpx.Response:
    """Issue one GitHub request; transport failures become :class:`GitHubAPIError`.

    A timeout is reported as 504, anything else that never reached GitHub as 502.
    """
    client = _get_client()
    try:
        response = await getattr(client, method)(url, **kwargs)
    except httpx.TimeoutException as exc:
        raise GitHubAPIError(f"{fallback}: GitHub timed out", status_code=504) from exc
    except httpx.TransportError as exc:
        raise GitHubAPIError(
            f"{fallback}: GitHub unreachable ({type(exc).__name__})", status_code=502,
        ) from exc
    _raise_for_github_error(response, fallback)
    return response


# ── Read operations ──────────────────────────────────────────────────────────


async def list_user_repos(
    access_token: str,
    page: int = 1,
    per_page: int = 30,
) -> list[dict]:
    """List one page of repositories for the authenticated user, most recently updated first.

    Returns the raw GitHub repo dicts.  Cached for 60 s per token/page.
    """
    key = (access_token, page, per_page)
    cached = _repo_list_cache.get(key)
    if cached is not None:
        return cached

    response = await _send(
        "get",
        f"{GITHUB_API_BASE}/user/repos",
        "Failed to fetch repos",
        params={"sort": "updated", "per_page": per_page, "page": page},
        headers=_auth_headers(access_token),
    )
    repos = response.json()
    _repo_list_cache[key] = repos
    return repos


async def list_branches(access_token: str, owner: str, repo: str) -> list[dict]:
    """List branches of ``owner/repo`` (raw GitHub dicts)."""
    response = await _send(
        "get",
        _repo_url(owner, repo, "branches"),
        "Failed to fetch branches",
        headers=_auth_headers(access_token),
    )
    return response.json()


async def get_tree(
    access_token: str,
    owner: str,
    repo: str,
    ref: str = "HEAD",
    recursive: bool = True,
) -> dict:
    """Fetch the git tree for *ref* (branch, tag or SHA).

    Returns the raw response: ``sha``, ``tree`` entries and ``truncated``.
    Trees over GitHub's size limit come back with ``truncated: true``.
    """
    params: dict[str, str] = {}
    if recursive:
        params["recursive"] = "1"
    response = await _send(
        "get",
        _repo_url(owner, repo, f"git/trees/{_quote_path(ref or 'HEAD')}"),
        "Failed to fetch tree",
        params=params,
        headers=_auth_headers(access_token),
    )
    return response.json()


async def get_file(
    access_token: str,
    owner: str,
    repo: str,
    path: str,
    ref: str | None = None,
) -> dict:
    """Fetch a single file through the contents API.

    Returns a dict with path, sha, size and the decoded text ``content``.
    """
    params = {"ref": ref} if ref else None
    response = await _send(
        "get",
        _repo_url(owner, repo, f"contents/{_quote_path(path.lstrip('/'))}"),
        f"Failed to fetch file: {path}",
        params=params,
        headers=_auth_headers(access_token),
    )
    data = response.json()
    if isinstance(data, list):
        raise GitHubAPIError(f"{path} is a directory", status_code=400)

    content = data.get("content", "") or ""
    if data.get("encoding") == "base64":
        content = base64.b64decode(content).decode("utf-8", errors="replace")
    return {
        "path": data.get("path", path),
        "sha": data.get("sha"),
        "size": data.get("size", 0),
        "content": content,
    }


# ── Git Data API (used by the commit flow) ───────────────────────────────────


async def get_ref(access_token: str, owner: str, repo: str, branch: str) -> str:
    """Return the commit SHA the branch head points at."""
    response = await _send(
        "get",
        _repo_url(owner, repo, f"git/refs/heads/{_quote_path(branch)}"),
        "Failed to get branch reference",
        headers=_auth_headers(access_token),
    )
    data = response.json()
    # No exact match: GitHub lists every ref starting with the name instead.
    if not isinstance(data, dict):
        raise GitHubAPIError(f"Branch not found: {branch}", status_code=404)
    return data["object"]["sha"]


async def get_commit(access_token: str, owner: str, repo: str, sha: str) -> dict:
    """Fetch a git commit object (``tree.sha``, ``parents``, ``message``)."""
    response = await _send(
        "get",
        _repo_url(owner, repo, f"git/commits/{_quote_path(sha)}"),
        "Failed to get commit",
        headers=_auth_headers(access_token),
    )
    return response.json()


async def create_blob(access_token: str, owner: str, repo: str, content: str) -> str:
    """Create a UTF-8 blob and return its SHA."""
    response = await _send(
        "post",
        _repo_url(owner, repo, "git/blobs"),
        "Failed to create blob",
        json={"content": content, "encoding": "utf-8"},
        headers=_auth_headers(access_token),
    )
    return response.json()["sha"]


async def create_tree(
    access_token: str,
    owner: str,
    repo: str,
    base_tree: str,
    entries: list[dict],
) -> str:
    """Create a tree layered on *base_tree* and return its SHA.

    An entry with ``sha: None`` deletes that path from the base tree.
    """
    response = await _send(
        "post",
        _repo_url(owner, repo, "git/trees"),
        "Failed to create tree",
        json={"base_tree": base_tree, "tree": entries},
        headers=_auth_headers(access_token),
    )
    return response.json()["sha"]


async def create_commit(
    access_token: str,
    owner: str,
    repo: str,
    message: str,
    tree_sha: str,
    parents: list[str],
) -> dict:
    """Create a commit object.  Returns the raw response (``sha``, ``html_url``)."""
    response = await _send(
        "post",
        _repo_url(owner, repo, "git/commits"),
        "Failed to create commit",
        json={"message": message, "tree": tree_sha, "parents": parents},
        headers=_auth_headers(access_token),
    )
    return response.json()


async def update_ref(
    access_token: str,
    owner: str,
    repo: str,
    branch: str,
    sha: str,
) -> None:
    """Point ``heads/<branch>`` at *sha* (fast-forward only)."""
    await _send(
        "patch",
        _repo_url(owner, repo, f"git/refs/heads/{_quote_path(branch)}"),
        "Failed to update branch reference",
        json={"sha": sha, "force": False},
        headers=_auth_headers(access_token),
    )
