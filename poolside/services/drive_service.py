"""Drive service -- OneDrive file operations shaped for the mobile file browser.

Graph items are mapped to the flat ``DriveItem`` dict the app renders:
``{id, name, path, isFolder, size, lastModified}`` (+ ``children`` in trees).
"""

import logging

from poolside.clients import onedrive_client
from poolside.clients.onedrive_client import join_path, normalize_path

logger = logging.getLogger(__name__)


def to_drive_item(raw: dict, parent_path: str) -> dict:
    """Map a raw Graph item listed under *parent_path* to a ``DriveItem``."""
    name = raw.get("name", "")
    return _item(raw, join_path(parent_path, name), name)


def _item(raw: dict, path: str, name: str) -> dict:
    return {
        "id": raw.get("id", ""),
        "name": name,
        "path": path,
        "isFolder": "folder" in raw,
        "size": raw.get("size", 0) or 0,
        "lastModified": raw.get("lastModifiedDateTime"),
    }


# ---------------------------------------------------------------------------
# Single-item operations
# ---------------------------------------------------------------------------


async def list_items(token: str, path: str = "/") -> list[dict]:
    """List the direct children of *path*."""
    path = normalize_path(path)
    children = await onedrive_client.list_children(token, path)
    return [to_drive_item(c, path) for c in children]


async def read_file(token: str, path: str) -> str:
    return await onedrive_client.get_content(token, normalize_path(path))


async def write_file(token: str, path: str, content: str) -> dict:
    """Create or overwrite a file.  Returns the written ``DriveItem``."""
    path = normalize_path(path)
    raw = await onedrive_client.put_content(token, path, content)
    parent = path.rsplit("/", 1)[0] or "/"
    return to_drive_item(raw, parent)


async def delete_file(token: str, path: str) -> None:
    await onedrive_client.delete_item(token, normalize_path(path))


async def create_folder(token: str, parent_path: str, name: str) -> dict:
    parent_path = normalize_path(parent_path)
    raw = await onedrive_client.create_folder(token, parent_path, name)
    return to_drive_item(raw, parent_path)


# ---------------------------------------------------------------------------
# Recursive views
# ---------------------------------------------------------------------------


async def get_file_tree(token: str, path: str = "/", max_depth: int = 2) -> dict:
    """Return the item at *path* with nested ``children``.

    The children of *path* are depth 0; folders are expanded while their
    depth is below *max_depth*.
    """
    path = normalize_path(path)
    raw = await onedrive_client.get_item(token, path)
    root = _item(raw, path, raw.get("name") or "root")
    if root["isFolder"]:
        root["children"] = await _expand(token, path, 0, max_depth)
    return root


async def _expand(token: str, path: str, depth: int, max_depth: int) -> list[dict]:
    if depth > max_depth:
        return []
    items = await list_items(token, path)
    for item in items:
        if item["isFolder"] and depth < max_depth:
            item["children"] = await _expand(token, item["path"], depth + 1, max_depth)
    return items


async def list_all_files(token: str, path: str = "/", max_depth: int = 3) -> list[str]:
    """Flat list of every file path under *path*, down to *max_depth* folder levels.

    Feeds the chat's ``search_files`` index on the phone.
    """
    files: list[str] = []
    await _collect_files(token, normalize_path(path), 0, max_depth, files)
    return files


async def _collect_files(token: str, path: str, depth: int, max_depth: int, out: list[str]) -> None:
    if depth > max_depth:
        return
    for item in await list_items(token, path):
        if item["isFolder"]:
            await _collect_files(token, item["path"], depth + 1, max_depth, out)
        else:
            out.append(item["path"])


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


async def batch_write(token: str, files: list[dict]) -> dict:
    """Apply a set of file changes one at a time.

    ``delete`` removes the file; any other action writes ``content``.  A
    failing file is recorded in ``errors`` and never aborts the batch.
    Returns ``{"results": [...], "errors": [{"path", "error"}]}``.
    """
    results: list[dict] = []
    errors: list[dict] = []
    for f in files:
        path = f.get("path", "")
        action = f.get("action", "modify")
        try:
            if action == "delete":
                await delete_file(token, path)
                results.append({"path": path, "action": "deleted"})
            else:
                item = await write_file(token, path, f.get("content") or "")
                results.append({"path": path, "action": action, "item": item})
        except Exception as exc:
            logger.warning("Batch write failed for %s: %s", path, exc)
            errors.append({"path": path, "error": str(exc)})
    return {"results": results, "errors": errors}
