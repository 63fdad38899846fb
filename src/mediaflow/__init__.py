"""Mediaflow - orchestration core for tool-calling media productions."""

__version__ = "0.1.0"

from .agent import AgentExecutor, AgentRunResult, ProgressEvent, ProgressStage
from .checkpoints import CheckpointApproval, CheckpointGate
from .config import MediaflowConfig, get_config
from .recovery import ErrorCategory, ErrorTracker, PolicyTable, RecoveryPolicy, RetryExecutor, ToolError
from .tools import ToolGroup, ToolRegistry, build_registry

__all__ = [
    "__version__",
    "AgentExecutor",
    "AgentRunResult",
    "ProgressEvent",
    "ProgressStage",
    "CheckpointGate",
    "CheckpointApproval",
    "MediaflowConfig",
    "get_config",
    "ErrorCategory",
    "ErrorTracker",
    "PolicyTable",
    "RecoveryPolicy",
    "RetryExecutor",
    "ToolError",
    "ToolGroup",
    "ToolRegistry",
    "build_registry",
]
