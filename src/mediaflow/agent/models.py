"""Data models for the orchestration loop."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class ModelTurn(BaseModel):
    """One model response: tool calls, free text, or both."""

    tool_calls: list[ToolCall] = Field(default_factory=list)
    content: str = ""


class Message(BaseModel):
    """A conversation message."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


class ProgressStage(str, Enum):
    STARTING = "starting"
    INTENT_DETECTED = "intent_detected"
    SESSION_CREATED = "session_created"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    RETRY = "retry"
    FALLBACK = "fallback"
    WARNING = "warning"
    SUMMARY = "summary"
    COMPLETE = "complete"
    LIMIT_REACHED = "limit_reached"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STAGES = frozenset(
    {ProgressStage.COMPLETE, ProgressStage.LIMIT_REACHED, ProgressStage.CANCELLED, ProgressStage.ERROR}
)


class AssetSummary(BaseModel):
    """Asset counts for a production session."""

    scenes: int = 0
    narrations: int = 0
    visuals: int = 0
    music: bool = False
    sfx: int = 0
    subtitles: bool = False


class ProgressEvent(BaseModel):
    """Structured progress notification. A sink, never a control input."""

    stage: ProgressStage
    message: str
    is_complete: bool = False
    tool: str | None = None
    success: bool | None = None
    iteration: int | None = None
    max_iterations: int | None = None
    session_id: str | None = None
    asset_summary: AssetSummary | None = None


class AgentRunResult(BaseModel):
    """What the loop returns once it stops."""

    stage: ProgressStage
    session_id: str | None = None
    iterations: int = 0
    final_response: str = ""
    report: dict[str, Any] = Field(default_factory=dict)
    tool_history: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        return bool(self.report.get("is_usable"))
