"""Chat service -- conversational code editing on top of the Anthropic Messages API.

Three flavours of chat share one prompt contract (the file-changes block):

* ``chat`` / ``stream_chat``: a single model call with the project context.
* ``chat_with_tools``: a bounded agentic loop where the model may read and
  search project files before answering.

Plus two one-shot helpers used by the project setup flow on the phone:
``analyze_project`` and ``generate_context_file``.
"""

import json
import logging
from typing import AsyncIterator

from poolside.clients import llm_client
from poolside.config import resolve_model, settings
from poolside.errors import (
    AuthError,
    BadRequestError,
    LLMAPIError,
    RateLimitError,
    UpstreamError,
)
from poolside.services.file_changes import parse_file_changes, strip_file_changes
from poolside.services.llm_json import safe_json_parse
from poolside.services.tool_executor import FILE_TOOLS, StorageContext, execute_tool_call

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

CHAT_SYSTEM_PROMPT = """\
You are an AI coding assistant integrated into "Poolside Code", a mobile app \
that lets users edit code through conversation. You help users modify their \
code projects stored in OneDrive.

IMPORTANT GUIDELINES:
1. When the user asks you to make changes to code, respond with BOTH:
   - A natural language explanation of what you're doing
   - The actual file changes in a structured format

2. For file changes, use this exact format at the end of your response:
   ---FILE_CHANGES_START---
   {"changes": [
     {"path": "relative/path/to/file.ts", "action": "modify", "content": "full file content here"},
     {"path": "new/file.ts", "action": "create", "content": "new file content"}
   ]}
   ---FILE_CHANGES_END---

3. Always provide the COMPLETE file content, not just the changed parts.

4. Keep explanations concise since users are on mobile devices.

5. If you need more information about the project structure or specific \
files, ask the user or request to see the relevant files.

6. Respect the project context - follow the coding conventions and patterns mentioned.

7. Never modify files listed in the "Do Not Modify" section of the context."""

TOOLS_SYSTEM_PROMPT = """\
You are an AI coding assistant integrated into "Poolside Code", a mobile app \
that lets users edit code through conversation. You help users modify their \
code projects stored in OneDrive or GitHub.

CRITICAL INSTRUCTIONS:

1. FILE READING: You have tools to read files from the project.
   - Use read_file to examine actual file contents BEFORE making changes
   - Use search_files to find files when you're not sure of the exact path
   - ALWAYS read a file before modifying it - never guess at its contents

2. FILE CHANGES FORMAT - THIS IS REQUIRED:
   When making ANY code changes, you MUST include this exact JSON block at the END of your response:

   ---FILE_CHANGES_START---
   {"changes": [{"path": "relative/path/to/file.ts", "action": "modify", "content": "COMPLETE file content here"}]}
   ---FILE_CHANGES_END---

   - action must be: "create", "modify", or "delete"
   - content must be the COMPLETE file content (not a diff or partial)
   - path should be relative to project root (e.g., "src/App.tsx" not "/src/App.tsx")
   - You MUST include this block whenever you suggest code changes - without it, changes cannot be applied!

3. Keep explanations concise since users are on mobile devices.

4. Respect the project context - follow existing coding conventions and patterns.

REMEMBER: If you suggest code changes but don't include the \
---FILE_CHANGES_START--- block, the user cannot apply them!"""

ANALYZE_PROMPT = """\
Analyze this project structure and identify:
1. The main programming languages used
2. Frameworks or libraries (look for package.json, requirements.txt, etc.)
3. Project type (web app, API, mobile app, etc.)
4. Key directories and their purposes

File structure:
{file_list}

Respond in JSON format:
{{
  "languages": ["TypeScript", "JavaScript"],
  "frameworks": ["React", "Node.js"],
  "projectType": "Web Application",
  "keyDirectories": {{
    "src": "Source code",
    "tests": "Test files"
  }}
}}"""

ANALYZE_SYSTEM_PROMPT = "You analyze code project structures and reply with a single JSON object."

CONTEXT_PROMPT = """\
Generate a context.md file for this project based on the analysis and user answers.

Project Name: {project_name}

Auto-detected Analysis:
{analysis}

User-provided Information:
- Overview: {overview}
- Tech Stack: {tech_stack}
- Conventions: {conventions}
- Do Not Modify: {do_not_modify}

Generate a well-structured context.md file using this format:

# Project Context - [Project Name]

## Overview
[What the project does]

## Tech Stack
[Frameworks, libraries, languages]

## Project Structure
[Key folders and their purposes]

## Important Conventions
[Code patterns, naming conventions]

## Do Not Modify
[Files/folders that should not be changed]

## Recent Changes
[Empty for now - will be auto-updated]"""

CONTEXT_SYSTEM_PROMPT = "You write concise, well-structured project documentation in Markdown."

_NOT_PROVIDED = "Not provided"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_api_key(api_key: str | None) -> str:
    """Return the caller's key (BYOK) or the server key."""
    key = api_key or settings.ANTHROPIC_API_KEY
    if not key:
        raise BadRequestError("API key is required")
    return key


def _system_with_context(prompt: str, context: str | None) -> str:
    return f"{prompt}\n\n---PROJECT CONTEXT---\n{context or ''}\n---END CONTEXT---"


def _to_api_messages(messages: list[dict]) -> list[dict]:
    return [{"role": m["role"], "content": m["content"]} for m in messages]


def _map_llm_error(exc: LLMAPIError) -> Exception:
    """Translate provider errors the phone has dedicated UI for."""
    if exc.upstream_status == 401:
        return AuthError("Invalid API key")
    if exc.upstream_status == 429:
        return RateLimitError("Rate limit exceeded")
    return exc


async def _call_llm(**kwargs) -> dict:
    try:
        return await llm_client.chat_anthropic(**kwargs)
    except LLMAPIError as exc:
        raise _map_llm_error(exc) from exc


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


async def chat(
    messages: list[dict],
    context: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
) -> dict:
    """Single-shot chat.  Returns ``{"content", "fileChanges"}``."""
    key = _resolve_api_key(api_key)
    result = await _call_llm(
        api_key=key,
        model=resolve_model(model),
        system_prompt=_system_with_context(CHAT_SYSTEM_PROMPT, context),
        messages=_to_api_messages(messages),
        max_tokens=settings.CHAT_MAX_TOKENS,
    )
    text = result["text"]
    return {
        "content": strip_file_changes(text),
        "fileChanges": parse_file_changes(text),
    }


async def stream_chat(
    messages: list[dict],
    context: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
) -> AsyncIterator[dict]:
    """Stream a chat reply as events.

    Yields ``{"type": "chunk", "content"}`` per text delta, then one
    ``{"type": "complete", "content", "fileChanges"}``.  Errors before the
    first chunk are raised; after that they are reported as a final
    ``{"type": "error", "error"}`` event.
    """
    key = _resolve_api_key(api_key)
    parts: list[str] = []
    stream = llm_client.stream_anthropic(
        api_key=key,
        model=resolve_model(model),
        system_prompt=_system_with_context(CHAT_SYSTEM_PROMPT, context),
        messages=_to_api_messages(messages),
        max_tokens=settings.CHAT_MAX_TOKENS,
    )
    try:
        async for delta in stream:
            parts.append(delta)
            yield {"type": "chunk", "content": delta}
    except LLMAPIError as exc:
        if not parts:
            raise _map_llm_error(exc) from exc
        logger.warning("Chat stream failed after %d chunk(s): %s", len(parts), exc)
        yield {"type": "error", "error": str(_map_llm_error(exc))}
        return

    full = "".join(parts)
    yield {
        "type": "complete",
        "content": strip_file_changes(full),
        "fileChanges": parse_file_changes(full),
    }


async def chat_with_tools(
    messages: list[dict],
    context: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    enable_tools: bool = False,
    storage: StorageContext | None = None,
) -> dict:
    """Agentic chat: let the model read / search project files before answering.

    Each iteration makes one LLM call.  While the model stops for
    ``tool_use`` (and a storage token is available) the requested tools run
    one at a time and their results are fed back as a user turn.  The loop
    is bounded by ``CHAT_MAX_TOOL_ITERATIONS``.

    Returns ``{"content", "fileChanges", "iterations"}``; ``content`` is the
    text of the last model turn with the file-changes block removed, and
    ``fileChanges`` accumulates every turn's parsed changes in order.
    """
    key = _resolve_api_key(api_key)
    model_id = resolve_model(model)
    system_prompt = _system_with_context(TOOLS_SYSTEM_PROMPT, context)
    has_storage = storage is not None and bool(storage.token)
    tools = FILE_TOOLS if enable_tools and has_storage else None

    api_messages = _to_api_messages(messages)
    iterations = 0
    final_text = ""
    all_changes: list[dict] = []

    while iterations < settings.CHAT_MAX_TOOL_ITERATIONS:
        iterations += 1
        data = await _call_llm(
            api_key=key,
            model=model_id,
            system_prompt=system_prompt,
            messages=api_messages,
            max_tokens=settings.CHAT_MAX_TOKENS,
            tools=tools,
        )

        # Without tools the client returns the simplified shape.
        if tools is None:
            final_text = data["text"]
            all_changes.extend(parse_file_changes(final_text))
            break

        content_blocks = data.get("content", [])
        final_text = "".join(
            b.get("text", "") for b in content_blocks if b.get("type") == "text"
        )
        all_changes.extend(parse_file_changes(final_text))

        tool_uses = [b for b in content_blocks if b.get("type") == "tool_use"]
        if data.get("stop_reason") != "tool_use" or not tool_uses or not has_storage:
            break

        tool_results: list[dict] = []
        for block in tool_uses:
            result = await execute_tool_call(block.get("name", ""), block.get("input") or {}, storage)
            tool_results.append({
                "type": "tool_result",
                "tool_use_id": block.get("id", ""),
                "content": result,
            })

        api_messages = [
            *api_messages,
            {"role": "assistant", "content": content_blocks},
            {"role": "user", "content": tool_results},
        ]
        logger.info(
            "Tool loop iteration %d: ran %d tool(s)", iterations, len(tool_results),
        )

    return {
        "content": strip_file_changes(final_text),
        "fileChanges": all_changes,
        "iterations": iterations,
    }


# ---------------------------------------------------------------------------
# Project setup helpers
# ---------------------------------------------------------------------------


async def analyze_project(files: list[str], api_key: str | None = None) -> dict:
    """Ask the analysis model to classify a project from its file list.

    Always uses ``ANALYSIS_MODEL`` (the cheap tier).  Returns the parsed
    JSON object (languages, frameworks, projectType, keyDirectories).
    """
    key = _resolve_api_key(api_key)
    result = await _call_llm(
        api_key=key,
        model=resolve_model(settings.ANALYSIS_MODEL),
        system_prompt=ANALYZE_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": ANALYZE_PROMPT.format(file_list="\n".join(files))}],
        max_tokens=settings.ANALYSIS_MAX_TOKENS,
    )
    analysis = safe_json_parse(result["text"])
    if not isinstance(analysis, dict):
        logger.warning("Unparseable project analysis: %.200s", result["text"])
        raise UpstreamError("Model returned an unparseable project analysis")
    return analysis


async def generate_context_file(
    project_name: str,
    analysis: dict | str | None,
    user_answers: dict | None = None,
    model: str | None = None,
    api_key: str | None = None,
) -> str:
    """Generate the markdown ``context.md`` that seeds every later chat."""
    key = _resolve_api_key(api_key)
    answers = user_answers or {}
    if isinstance(analysis, str):
        analysis_text = analysis
    else:
        analysis_text = json.dumps(analysis or {}, indent=2)

    prompt = CONTEXT_PROMPT.format(
        project_name=project_name,
        analysis=analysis_text,
        overview=answers.get("overview") or _NOT_PROVIDED,
        tech_stack=answers.get("techStack") or _NOT_PROVIDED,
        conventions=answers.get("conventions") or _NOT_PROVIDED,
        do_not_modify=answers.get("doNotModify") or _NOT_PROVIDED,
    )
    result = await _call_llm(
        api_key=key,
        model=resolve_model(model),
        system_prompt=CONTEXT_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=settings.CONTEXT_MAX_TOKENS,
    )
    return result["text"].strip()
