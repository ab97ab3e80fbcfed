"""File-change protocol -- the tagged JSON block a model appends to propose edits.

A reply proposing edits ends with::

    ---FILE_CHANGES_START---
    {"changes": [{"path": "src/App.tsx", "action": "modify", "content": "..."}]}
    ---FILE_CHANGES_END---

The mobile client shows the prose and offers the parsed changes for
one-tap apply, so the block itself must never reach the visible reply.
"""

import json
import logging
import re

from poolside.services.llm_json import strip_codeblock

logger = logging.getLogger(__name__)

FILE_CHANGES_START = "---FILE_CHANGES_START---"
FILE_CHANGES_END = "---FILE_CHANGES_END---"
FILE_CHANGE_ACTIONS = frozenset({"create", "modify", "delete"})

_BLOCK_RE = re.compile(
    re.escape(FILE_CHANGES_START) + r"(.*?)" + re.escape(FILE_CHANGES_END),
    re.DOTALL,
)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def _valid_changes(raw: object) -> list[dict]:
    """Keep well-formed entries only; normalise them to plain dicts."""
    if not isinstance(raw, list):
        return []
    changes: list[dict] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        path = entry.get("path")
        action = entry.get("action")
        if not isinstance(path, str) or not path.strip():
            continue
        if action not in FILE_CHANGE_ACTIONS:
            logger.warning("Dropping file change for %s: unknown action %r", path, action)
            continue
        change = {"path": path, "action": action}
        content = entry.get("content")
        if isinstance(content, str):
            change["content"] = content
        changes.append(change)
    return changes


def parse_file_changes(text: str) -> list[dict]:
    """Extract proposed file changes from the first delimited block in *text*.

    Accepts ``{"changes": [...]}`` or a bare array.  If the wrapper object
    is malformed, the outermost ``[...]`` inside the block is tried.
    Returns ``[]`` when there is no block or nothing parses; never raises.
    """
    match = _BLOCK_RE.search(text or "")
    if not match:
        return []

    body = strip_codeblock(match.group(1))
    try:
        data = json.loads(body)
    except ValueError as exc:
        logger.warning("Failed to parse file changes block: %s", exc)
        array_match = _ARRAY_RE.search(match.group(1))
        if not array_match:
            return []
        try:
            data = json.loads(array_match.group(0))
        except ValueError as exc2:
            logger.warning("Failed to parse file changes array: %s", exc2)
            return []

    if isinstance(data, dict):
        data = data.get("changes", [])
    changes = _valid_changes(data)
    logger.debug("Parsed %d file change(s)", len(changes))
    return changes


def strip_file_changes(text: str) -> str:
    """Remove every file-changes block from *text* and trim whitespace."""
    return _BLOCK_RE.sub("", text or "").strip()
