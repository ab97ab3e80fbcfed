"""GitHub router -- repo browsing and committing accepted changes."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from poolside.api.deps import get_provider_token
from poolside.errors import BadRequestError
from poolside.services import github_service

router = APIRouter(prefix="/api/github", tags=["github"])


class CommitFile(BaseModel):
    path: str
    action: str = "modify"
    content: str | None = None


class CommitRequest(BaseModel):
    """Request body for committing file changes to a branch."""

    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    message: str | None = None
    files: list[CommitFile] = []


def _require_repo(owner: str | None, repo: str | None) -> None:
    if not owner or not repo:
        raise BadRequestError("Owner and repo are required")


@router.get("/repos")
async def list_repos(
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=100),
    token: str = Depends(get_provider_token),
) -> dict:
    """List the user's repositories, most recently updated first."""
    repos = await github_service.list_repos(token, page=page, per_page=per_page)
    return {"repos": repos}


@router.get("/branches")
async def list_branches(
    owner: str | None = Query(None),
    repo: str | None = Query(None),
    token: str = Depends(get_provider_token),
) -> dict:
    _require_repo(owner, repo)
    branches = await github_service.list_branches(token, owner, repo)
    return {"branches": branches}


@router.get("/tree")
async def get_tree(
    owner: str | None = Query(None),
    repo: str | None = Query(None),
    ref: str = Query("HEAD"),
    token: str = Depends(get_provider_token),
) -> dict:
    """Full recursive tree of the repo at *ref*."""
    _require_repo(owner, repo)
    return await github_service.get_tree(token, owner, repo, ref=ref)


@router.get("/file")
async def get_file(
    owner: str | None = Query(None),
    repo: str | None = Query(None),
    path: str | None = Query(None),
    ref: str | None = Query(None),
    token: str = Depends(get_provider_token),
) -> dict:
    if not owner or not repo or not path:
        raise BadRequestError("Owner, repo, and path are required")
    return await github_service.get_file(token, owner, repo, path, ref=ref)


@router.post("/commit")
async def commit(
    body: CommitRequest,
    token: str = Depends(get_provider_token),
) -> dict:
    """Commit accepted file changes to a branch as one commit."""
    if not (body.owner and body.repo and body.branch and body.message and body.files):
        raise BadRequestError("Owner, repo, branch, message, and files are required")
    return await github_service.commit_files(
        token,
        body.owner,
        body.repo,
        body.branch,
        body.message,
        [f.model_dump() for f in body.files],
    )
