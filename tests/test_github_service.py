"""Tests for the GitHub service -- response shaping and the multi-file commit."""

from unittest.mock import AsyncMock, patch

import httpx

import pytest

from poolside.errors import BadRequestError, GitHubAPIError
from poolside.services import github_service

_CLIENT = "poolside.services.github_service.github_client"


@pytest.mark.asyncio
@patch(f"{_CLIENT}.list_user_repos", new_callable=AsyncMock)
async def test_list_repos_shape(mock_list):
    mock_list.return_value = [{
        "id": 7,
        "name": "app",
        "full_name": "octo/app",
        "owner": {"login": "octo"},
        "private": True,
        "description": None,
        "default_branch": "main",
        "updated_at": "2024-05-01T00:00:00Z",
        "language": "TypeScript",
        "stargazers_count": 3,
    }]

    repos = await github_service.list_repos("tok", page=2, per_page=10)

    mock_list.assert_awaited_once_with("tok", page=2, per_page=10)
    assert repos == [{
        "id": 7,
        "name": "app",
        "fullName": "octo/app",
        "owner": "octo",
        "private": True,
        "description": None,
        "defaultBranch": "main",
        "updatedAt": "2024-05-01T00:00:00Z",
        "language": "TypeScript",
    }]


@pytest.mark.asyncio
@patch(f"{_CLIENT}.list_branches", new_callable=AsyncMock)
async def test_list_branches_shape(mock_list):
    mock_list.return_value = [{"name": "main", "commit": {"sha": "abc"}, "protected": True}]
    assert await github_service.list_branches("tok", "octo", "app") == [
        {"name": "main", "sha": "abc", "protected": True},
    ]


@pytest.mark.asyncio
@patch(f"{_CLIENT}.get_tree", new_callable=AsyncMock)
async def test_get_tree_shape(mock_tree):
    mock_tree.return_value = {
        "sha": "t1",
        "tree": [
            {"path": "src", "type": "tree", "sha": "s1", "mode": "040000"},
            {"path": "src/a.ts", "type": "blob", "sha": "s2", "size": 10, "mode": "100644"},
            {"path": "vendor/lib", "type": "commit", "sha": "s3"},
        ],
        "truncated": False,
    }

    result = await github_service.get_tree("tok", "octo", "app", ref="dev")

    mock_tree.assert_awaited_once_with("tok", "octo", "app", ref="dev", recursive=True)
    assert result["sha"] == "t1"
    assert result["truncated"] is False
    assert [e["type"] for e in result["tree"]] == ["tree", "blob", "blob"]
    assert result["tree"][1] == {"path": "src/a.ts", "type": "blob", "sha": "s2", "size": 10}


# ---------------------------------------------------------------------------
# commit_files
# ---------------------------------------------------------------------------


@pytest.fixture
def git_data():
    """Patch every Git Data call with a happy-path mock."""
    with patch(f"{_CLIENT}.get_ref", new_callable=AsyncMock) as get_ref, \
            patch(f"{_CLIENT}.get_commit", new_callable=AsyncMock) as get_commit, \
            patch(f"{_CLIENT}.create_blob", new_callable=AsyncMock) as create_blob, \
            patch(f"{_CLIENT}.create_tree", new_callable=AsyncMock) as create_tree, \
            patch(f"{_CLIENT}.create_commit", new_callable=AsyncMock) as create_commit, \
            patch(f"{_CLIENT}.update_ref", new_callable=AsyncMock) as update_ref:
        get_ref.return_value = "base-sha"
        get_commit.return_value = {"sha": "base-sha", "tree": {"sha": "base-tree"}}
        create_blob.side_effect = lambda token, owner, repo, content: f"blob-{content}"
        create_tree.return_value = "new-tree"
        create_commit.return_value = {
            "sha": "new-commit-sha",
            "html_url": "https://github.com/octo/app/commit/new-commit-sha",
        }
        yield {
            "get_ref": get_ref,
            "get_commit": get_commit,
            "create_blob": create_blob,
            "create_tree": create_tree,
            "create_commit": create_commit,
            "update_ref": update_ref,
        }


@pytest.mark.asyncio
async def test_commit_files_sequence(git_data):
    result = await github_service.commit_files(
        "tok", "octo", "app", "main", "Rename button",
        [
            {"path": "/src/a.ts", "action": "modify", "content": "A"},
            {"path": "src/b.ts", "action": "create", "content": "B"},
            {"path": "old.ts", "action": "delete"},
        ],
    )

    assert result == {
        "commit": {
            "sha": "new-commit-sha",
            "message": "Rename button",
            "url": "https://github.com/octo/app/commit/new-commit-sha",
        },
    }
    git_data["get_ref"].assert_awaited_once_with("tok", "octo", "app", "main")
    git_data["get_commit"].assert_awaited_once_with("tok", "octo", "app", "base-sha")
    assert git_data["create_blob"].await_count == 2

    args = git_data["create_tree"].await_args.args
    assert args[3] == "base-tree"
    assert args[4] == [
        {"path": "src/a.ts", "mode": "100644", "type": "blob", "sha": "blob-A"},
        {"path": "src/b.ts", "mode": "100644", "type": "blob", "sha": "blob-B"},
        {"path": "old.ts", "mode": "100644", "type": "blob", "sha": None},
    ]
    git_data["create_commit"].assert_awaited_once_with(
        "tok", "octo", "app", "Rename button", "new-tree", ["base-sha"],
    )
    git_data["update_ref"].assert_awaited_once_with(
        "tok", "octo", "app", "main", "new-commit-sha",
    )


@pytest.mark.asyncio
async def test_commit_delete_only_creates_no_blobs(git_data):
    await github_service.commit_files(
        "tok", "octo", "app", "main", "Remove file", [{"path": "gone.ts", "action": "delete"}],
    )
    git_data["create_blob"].assert_not_awaited()
    assert git_data["create_tree"].await_args.args[4][0]["sha"] is None


@pytest.mark.asyncio
async def test_commit_missing_branch(git_data):
    git_data["get_ref"].side_effect = GitHubAPIError("Not Found", status_code=404)

    with pytest.raises(BadRequestError, match="Failed to get branch reference"):
        await github_service.commit_files(
            "tok", "octo", "app", "nope", "msg", [{"path": "a", "content": "x"}],
        )
    git_data["create_tree"].assert_not_awaited()


@pytest.mark.asyncio
async def test_commit_blob_failure_names_path(git_data):
    git_data["create_blob"].side_effect = GitHubAPIError("too large", status_code=422)

    with pytest.raises(BadRequestError, match="Failed to create blob for src/big.bin"):
        await github_service.commit_files(
            "tok", "octo", "app", "main", "msg",
            [{"path": "/src/big.bin", "action": "create", "content": "x"}],
        )
    git_data["update_ref"].assert_not_awaited()


@pytest.mark.asyncio
async def test_commit_non_fast_forward(git_data):
    git_data["update_ref"].side_effect = GitHubAPIError("Update is not a fast forward", status_code=422)

    with pytest.raises(BadRequestError) as exc_info:
        await github_service.commit_files(
            "tok", "octo", "app", "main", "msg", [{"path": "a", "content": "x"}],
        )
    assert str(exc_info.value) == "Failed to update branch reference"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_commit_unreachable_github_names_the_stage():
    client = AsyncMock()
    client.get.side_effect = httpx.ConnectError("connection refused")

    with patch(f"{_CLIENT}._get_client", return_value=client):
        with pytest.raises(BadRequestError, match="Failed to get branch reference"):
            await github_service.commit_files(
                "tok", "octo", "app", "main", "msg", [{"path": "a", "content": "x"}],
            )


@pytest.mark.asyncio
async def test_commit_blob_timeout_names_the_stage(git_data):
    git_data["create_blob"].side_effect = GitHubAPIError(
        "Failed to create blob: GitHub timed out", status_code=504,
    )

    with pytest.raises(BadRequestError, match="Failed to create blob for a.ts"):
        await github_service.commit_files(
            "tok", "octo", "app", "main", "msg", [{"path": "a.ts", "content": "x"}],
        )
