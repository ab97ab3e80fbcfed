"""GitHub service -- repo browsing and atomic multi-file commits.

Responses are reshaped to the camelCase summaries the mobile client
renders; raw GitHub payloads never leave this module.
"""

import asyncio
import logging

from poolside.clients import github_client
from poolside.errors import BadRequestError, GitHubAPIError

logger = logging.getLogger(__name__)

_FILE_MODE = "100644"


async def list_repos(token: str, page: int = 1, per_page: int = 30) -> list[dict]:
    repos = await github_client.list_user_repos(token, page=page, per_page=per_page)
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "fullName": r.get("full_name"),
            "owner": (r.get("owner") or {}).get("login"),
            "private": r.get("private", False),
            "description": r.get("description"),
            "defaultBranch": r.get("default_branch"),
            "updatedAt": r.get("updated_at"),
            "language": r.get("language"),
        }
        for r in repos
    ]


async def list_branches(token: str, owner: str, repo: str) -> list[dict]:
    branches = await github_client.list_branches(token, owner, repo)
    return [
        {
            "name": b["name"],
            "sha": (b.get("commit") or {}).get("sha"),
            "protected": b.get("protected", False),
        }
        for b in branches
    ]


async def get_tree(token: str, owner: str, repo: str, ref: str = "HEAD") -> dict:
    """Return the full recursive tree with entries typed ``tree`` or ``blob``."""
    data = await github_client.get_tree(token, owner, repo, ref=ref or "HEAD", recursive=True)
    return {
        "sha": data.get("sha"),
        "tree": [
            {
                "path": item.get("path"),
                "type": "tree" if item.get("type") == "tree" else "blob",
                "sha": item.get("sha"),
                "size": item.get("size"),
            }
            for item in data.get("tree", [])
        ],
        "truncated": data.get("truncated", False),
    }


async def get_file(
    token: str, owner: str, repo: str, path: str, ref: str | None = None,
) -> dict:
    return await github_client.get_file(token, owner, repo, path, ref=ref)


# ---------------------------------------------------------------------------
# Commit (Git Data API)
# ---------------------------------------------------------------------------


async def _stage(message: str, coro):
    """Await one commit stage, converting a GitHub failure into a 400 naming the stage."""
    try:
        return await coro
    except GitHubAPIError as exc:
        logger.warning("%s: %s (GitHub %s)", message, exc, exc.upstream_status)
        raise BadRequestError(message) from exc


async def _tree_entry(token: str, owner: str, repo: str, change: dict) -> dict:
    path = change["path"].lstrip("/")
    if change.get("action") == "delete":
        return {"path": path, "mode": _FILE_MODE, "type": "blob", "sha": None}
    blob_sha = await _stage(
        f"Failed to create blob for {path}",
        github_client.create_blob(token, owner, repo, change.get("content") or ""),
    )
    return {"path": path, "mode": _FILE_MODE, "type": "blob", "sha": blob_sha}


async def commit_files(
    token: str,
    owner: str,
    repo: str,
    branch: str,
    message: str,
    files: list[dict],
) -> dict:
    """Commit *files* to *branch* as a single commit.

    Sequence: branch ref -> base commit's tree -> one blob per written file
    (created concurrently; deletes become ``sha: None`` entries) -> new tree
    on ``base_tree`` -> commit with the base commit as parent -> fast-forward
    the branch.  Any stage failure raises :class:`BadRequestError` naming the
    stage.

    Returns ``{"commit": {"sha", "message", "url"}}``.
    """
    base_sha = await _stage(
        "Failed to get branch reference",
        github_client.get_ref(token, owner, repo, branch),
    )
    base_commit = await _stage(
        "Failed to get commit",
        github_client.get_commit(token, owner, repo, base_sha),
    )
    base_tree = base_commit["tree"]["sha"]

    entries = await asyncio.gather(
        *(_tree_entry(token, owner, repo, f) for f in files)
    )

    tree_sha = await _stage(
        "Failed to create tree",
        github_client.create_tree(token, owner, repo, base_tree, list(entries)),
    )
    new_commit = await _stage(
        "Failed to create commit",
        github_client.create_commit(token, owner, repo, message, tree_sha, [base_sha]),
    )
    await _stage(
        "Failed to update branch reference",
        github_client.update_ref(token, owner, repo, branch, new_commit["sha"]),
    )
    logger.info(
        "Committed %d file(s) to %s/%s@%s: %s",
        len(files), owner, repo, branch, new_commit["sha"][:7],
    )
    return {
        "commit": {
            "sha": new_commit["sha"],
            "message": message,
            "url": new_commit.get("html_url"),
        },
    }
