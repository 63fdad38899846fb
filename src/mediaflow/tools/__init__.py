"""Tool boundary and dependency registry."""

from .base import FunctionTool, OpaqueResult, StructuredResult, Tool, ToolResult, interpret_result
from .catalog import TOOL_CATALOG, build_catalog_registry, build_registry
from .registry import (
    TOOL_GROUP_ORDER,
    OrderValidation,
    OrderViolation,
    ToolDefinition,
    ToolGroup,
    ToolRegistry,
    get_group_dependency_description,
    get_next_group,
    is_valid_group_transition,
)

__all__ = [
    "Tool",
    "FunctionTool",
    "ToolResult",
    "StructuredResult",
    "OpaqueResult",
    "interpret_result",
    "ToolGroup",
    "TOOL_GROUP_ORDER",
    "ToolDefinition",
    "ToolRegistry",
    "OrderValidation",
    "OrderViolation",
    "is_valid_group_transition",
    "get_next_group",
    "get_group_dependency_description",
    "TOOL_CATALOG",
    "build_registry",
    "build_catalog_registry",
]
