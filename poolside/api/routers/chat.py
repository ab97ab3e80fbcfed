"""Chat router -- conversational editing, project analysis, and context generation.

Every route here spends LLM tokens, so the whole router sits behind the
per-IP chat rate limiter.
"""

import json
import logging
from typing import Literal

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from poolside.api.rate_limit import enforce_chat_rate_limit
from poolside.errors import BadRequestError
from poolside.services import chat_service
from poolside.services.tool_executor import StorageContext

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(enforce_chat_rate_limit)],
)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Request body for a plain chat turn."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage]
    context: str | None = None
    stream: bool = False
    model: str | None = None
    api_key: str | None = Field(None, alias="apiKey")


class GitHubLocation(BaseModel):
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None


class ToolChatRequest(ChatRequest):
    """Request body for a chat turn where the model may read project files."""

    enable_tools: bool = Field(False, alias="enableTools")
    storage_type: str | None = Field(None, alias="storageType")
    storage_token: str | None = Field(None, alias="storageToken")
    project_path: str = Field("/", alias="projectPath")
    github: GitHubLocation | None = None
    file_list: list[str] = Field(default_factory=list, alias="fileList")

    def storage_context(self) -> StorageContext:
        return StorageContext(
            storage_type=self.storage_type,
            token=self.storage_token,
            project_path=self.project_path or "/",
            owner=self.github.owner if self.github else None,
            repo=self.github.repo if self.github else None,
            branch=self.github.branch if self.github else None,
            file_list=self.file_list,
        )


class AnalyzeRequest(BaseModel):
    """Request body for project analysis."""

    model_config = ConfigDict(populate_by_name=True)

    files: list[str]
    api_key: str | None = Field(None, alias="apiKey")


class GenerateContextRequest(BaseModel):
    """Request body for generating a project's context.md."""

    model_config = ConfigDict(populate_by_name=True)

    project_name: str | None = Field(None, alias="projectName")
    analysis: dict | str | None = None
    user_answers: dict[str, str] = Field(default_factory=dict, alias="userAnswers")
    model: str | None = None
    api_key: str | None = Field(None, alias="apiKey")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


@router.post("", include_in_schema=False)
@router.post("/")
async def chat(body: ChatRequest):
    """Send a chat turn.  ``stream: true`` answers with server-sent events."""
    messages = [m.model_dump() for m in body.messages]

    if not body.stream:
        return await chat_service.chat(
            messages, body.context, model=body.model, api_key=body.api_key,
        )

    events = chat_service.stream_chat(
        messages, body.context, model=body.model, api_key=body.api_key,
    )
    # Pull the first event eagerly so a bad key or an upstream rejection
    # still becomes a normal HTTP error instead of a 200 stream.
    first = await anext(events)

    async def event_stream():
        yield _sse(first)
        async for event in events:
            yield _sse(event)

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=_SSE_HEADERS,
    )


@router.post("/with-tools")
async def chat_with_tools(body: ToolChatRequest) -> dict:
    """Chat turn with the read_file / search_files tool loop."""
    return await chat_service.chat_with_tools(
        [m.model_dump() for m in body.messages],
        body.context,
        model=body.model,
        api_key=body.api_key,
        enable_tools=body.enable_tools,
        storage=body.storage_context(),
    )


@router.post("/analyze")
async def analyze(body: AnalyzeRequest) -> dict:
    """Classify a project (languages, frameworks, type) from its file list."""
    analysis = await chat_service.analyze_project(body.files, api_key=body.api_key)
    return {"analysis": analysis}


@router.post("/generate-context")
async def generate_context(body: GenerateContextRequest) -> dict:
    """Draft the project's context.md from the analysis and the user's answers."""
    if not body.project_name:
        raise BadRequestError("Project name is required")
    content = await chat_service.generate_context_file(
        body.project_name,
        body.analysis,
        body.user_answers,
        model=body.model,
        api_key=body.api_key,
    )
    return {"content": content}
