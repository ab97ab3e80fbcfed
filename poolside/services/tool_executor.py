"""Tool executor -- file tools the chat model can call during a tool-use loop.

Two read-only tools are offered: ``read_file`` (fetch a file from the
user's OneDrive folder or GitHub repo) and ``search_files`` (match paths
from the file index the mobile client sends with the request).

All handlers return strings (required by the Anthropic tool API).  The
dispatcher catches exceptions and returns error strings rather than
raising, so a failing tool never aborts the chat.
"""

import logging
import re
from dataclasses import dataclass, field

from poolside.clients import github_client, onedrive_client
from poolside.config import settings

logger = logging.getLogger(__name__)

STORAGE_ONEDRIVE = "onedrive"
STORAGE_GITHUB = "github"

# ---------------------------------------------------------------------------
# Tool definitions (Anthropic format)
# ---------------------------------------------------------------------------

FILE_TOOLS: list[dict] = [
    {
        "name": "read_file",
        "description": "Read the contents of a file from the project.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The relative path to the file within the project",
                },
            },
            "required": ["path"],
        },
    },
    {
        "name": "search_files",
        "description": "Search for files in the project that match a pattern.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search query - filename pattern or text to search",
                },
            },
            "required": ["query"],
        },
    },
]


@dataclass
class StorageContext:
    """Where the project lives and how to reach it."""

    storage_type: str | None
    token: str | None
    project_path: str = "/"
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    file_list: list[str] = field(default_factory=list)

    @property
    def has_github_repo(self) -> bool:
        return bool(self.owner and self.repo)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


async def execute_tool_call(tool_name: str, tool_input: dict, ctx: StorageContext) -> str:
    """Dispatch a tool call to its handler.

    Args:
        tool_name: Name of the tool the model asked for.
        tool_input: The tool_use block's ``input`` dict.
        ctx: Storage location of the project.

    Returns:
        String result to send back as the tool_result content.
    """
    logger.info(
        "Executing tool %s (storage=%s, indexed_files=%d)",
        tool_name, ctx.storage_type, len(ctx.file_list),
    )
    try:
        if tool_name == "read_file":
            return await _exec_read_file(tool_input, ctx)
        if tool_name == "search_files":
            return _exec_search_files(tool_input, ctx)
    except Exception as exc:
        logger.warning("Tool %s failed: %s", tool_name, exc)
        return f"Error executing {tool_name}: {exc}"
    return f"Unknown tool: {tool_name}"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n\n[... truncated at {max_chars} characters ...]"


async def _exec_read_file(inp: dict, ctx: StorageContext) -> str:
    """Read one project file.

    Input: { "path": "src/App.tsx" } -- relative to the project root.
    """
    rel_path = str(inp.get("path") or "").lstrip("/")
    if not rel_path:
        return "Error: path is required"

    if ctx.storage_type == STORAGE_ONEDRIVE:
        full_path = onedrive_client.join_path(ctx.project_path, rel_path)
        content = await onedrive_client.get_content(ctx.token, full_path)
    elif ctx.storage_type == STORAGE_GITHUB and ctx.has_github_repo:
        data = await github_client.get_file(
            ctx.token, ctx.owner, ctx.repo, rel_path, ref=ctx.branch or "HEAD",
        )
        content = data["content"]
    else:
        return "Error: Unknown storage type"

    return f"File: {rel_path}\n\n{_truncate(content, settings.TOOL_MAX_FILE_CHARS)}"


def _exec_search_files(inp: dict, ctx: StorageContext) -> str:
    """Match paths in the client-supplied file index.

    Input: { "query": "*.tsx" } -- a ``*`` makes it a glob, otherwise a
    case-insensitive substring match.
    """
    query = str(inp.get("query") or "").lower()
    files = ctx.file_list

    if "*" in query:
        pattern = re.compile(re.escape(query).replace(r"\*", ".*"))
        matches = [f for f in files if pattern.search(f.lower())]
    else:
        matches = [f for f in files if query in f.lower()]

    if not matches:
        return (
            f'No files found matching "{query}". '
            f"The project has {len(files)} indexed files."
        )

    limit = settings.SEARCH_RESULT_LIMIT
    lines = [f'Found {len(matches)} file(s) matching "{query}":', *matches[:limit]]
    if len(matches) > limit:
        lines.append(f"... and {len(matches) - limit} more")
    return "\n".join(lines)
