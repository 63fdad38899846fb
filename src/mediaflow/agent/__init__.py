"""Orchestration loop for tool-calling productions."""

from .executor import PLANNING_TOOLS, AgentExecutor
from .guard import DuplicateGuard, check_result_cache
from .intent import IntentResult, analyze_intent, generate_intent_hint
from .model import NUDGE_MESSAGE, ChatModel, ModelBlockedError
from .models import (
    AgentRunResult,
    AssetSummary,
    Message,
    ModelTurn,
    ProgressEvent,
    ProgressStage,
    ToolCall,
)
from .state import InMemorySessionStore, ProductionState, SessionStore, is_valid_session_id
from .steps import create_step_identifier
from .tool_runner import ToolOutcome, ToolRunner

__all__ = [
    "AgentExecutor",
    "PLANNING_TOOLS",
    "ChatModel",
    "ModelBlockedError",
    "NUDGE_MESSAGE",
    "ToolCall",
    "ModelTurn",
    "Message",
    "ProgressEvent",
    "ProgressStage",
    "AssetSummary",
    "AgentRunResult",
    "ProductionState",
    "SessionStore",
    "InMemorySessionStore",
    "is_valid_session_id",
    "create_step_identifier",
    "DuplicateGuard",
    "check_result_cache",
    "IntentResult",
    "analyze_intent",
    "generate_intent_hint",
    "ToolRunner",
    "ToolOutcome",
]
