"""Storage router -- OneDrive browsing and editing for the mobile client."""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from poolside.api.deps import get_provider_token
from poolside.errors import BadRequestError
from poolside.services import drive_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storage", tags=["storage"])


class WriteFileRequest(BaseModel):
    """Request body for creating or overwriting a file."""

    path: str | None = None
    content: str = ""


class CreateFolderRequest(BaseModel):
    """Request body for creating a folder."""

    model_config = ConfigDict(populate_by_name=True)

    parent_path: str = Field("/", alias="parentPath")
    folder_name: str | None = Field(None, alias="folderName")


class BatchFile(BaseModel):
    path: str = Field(..., min_length=1)
    action: str = "modify"
    content: str | None = None


class BatchWriteRequest(BaseModel):
    """Request body for applying a set of file changes."""

    files: list[BatchFile]


def _require(value: str | None, name: str) -> str:
    if not value or not value.strip():
        raise BadRequestError(f"{name} is required")
    return value


@router.get("/list")
async def list_items(
    path: str = Query("/"),
    token: str = Depends(get_provider_token),
) -> dict:
    """List the contents of a folder."""
    items = await drive_service.list_items(token, path)
    return {"items": items}


@router.get("/file")
async def read_file(
    path: str | None = Query(None),
    token: str = Depends(get_provider_token),
) -> dict:
    """Read a text file."""
    path = _require(path, "Path")
    content = await drive_service.read_file(token, path)
    return {"content": content}


@router.put("/file")
async def write_file(
    body: WriteFileRequest,
    token: str = Depends(get_provider_token),
) -> dict:
    """Create or overwrite a text file."""
    path = _require(body.path, "Path")
    item = await drive_service.write_file(token, path, body.content)
    return {"item": item}


@router.delete("/file")
async def delete_file(
    path: str | None = Query(None),
    token: str = Depends(get_provider_token),
) -> dict:
    """Delete a file (to the OneDrive recycle bin)."""
    path = _require(path, "Path")
    await drive_service.delete_file(token, path)
    return {"success": True}


@router.post("/folder")
async def create_folder(
    body: CreateFolderRequest,
    token: str = Depends(get_provider_token),
) -> dict:
    """Create a folder under ``parentPath``."""
    name = _require(body.folder_name, "Folder name")
    item = await drive_service.create_folder(token, body.parent_path, name)
    return {"item": item}


@router.get("/tree")
async def file_tree(
    path: str = Query("/"),
    max_depth: int = Query(2, alias="maxDepth", ge=0, le=10),
    token: str = Depends(get_provider_token),
) -> dict:
    """Nested folder tree rooted at *path*."""
    tree = await drive_service.get_file_tree(token, path, max_depth=max_depth)
    return {"tree": tree}


@router.get("/files")
async def list_all_files(
    path: str = Query("/"),
    max_depth: int = Query(3, alias="maxDepth", ge=0, le=10),
    token: str = Depends(get_provider_token),
) -> dict:
    """Flat list of file paths, used as the chat's search index."""
    files = await drive_service.list_all_files(token, path, max_depth=max_depth)
    return {"files": files}


@router.post("/batch-write")
async def batch_write(
    body: BatchWriteRequest,
    token: str = Depends(get_provider_token),
) -> dict:
    """Apply accepted file changes from a chat reply."""
    result = await drive_service.batch_write(
        token, [f.model_dump() for f in body.files],
    )
    if result["errors"]:
        logger.warning(
            "Batch write: %d ok, %d failed", len(result["results"]), len(result["errors"]),
        )
    return result
