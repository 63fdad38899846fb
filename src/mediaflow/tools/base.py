"""Tool boundary.

A tool is anything with a ``name`` and an async ``invoke(args)`` returning
a serialized result string. Argument validation is the tool's own job.

Results are interpreted into one of two variants:
- StructuredResult: the string parsed as a JSON object; may carry
  ``success`` and ``message``
- OpaqueResult: anything else; treated as success
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Tool(Protocol):
    """A named capability invoked with structured arguments."""

    name: str

    async def invoke(self, args: Mapping[str, Any]) -> str: ...


class FunctionTool:
    """Wrap a plain or async function as a Tool.

    Non-string return values are serialized to JSON.

    Example:
        async def plan_video(args):
            return {"success": True, "session_id": "prod_1"}

        tool = FunctionTool("plan_video", plan_video)
    """

    def __init__(self, name: str, func: Callable[[dict[str, Any]], Any], description: str = ""):
        self.name = name
        self.description = description or (func.__doc__ or "").strip()
        self._func = func

    async def invoke(self, args: Mapping[str, Any]) -> str:
        result = self._func(dict(args))
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)

    def __repr__(self) -> str:
        return f"FunctionTool({self.name!r})"


@dataclass
class StructuredResult:
    """A tool result that parsed as a JSON object."""

    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        # Absent flag counts as success; only an explicit false fails.
        return self.payload.get("success") is not False

    @property
    def message(self) -> str | None:
        value = self.payload.get("message")
        return value if isinstance(value, str) else None

    @property
    def error(self) -> str | None:
        value = self.payload.get("error")
        return str(value) if value else None


@dataclass
class OpaqueResult:
    """A tool result that is not a JSON object."""

    text: str

    @property
    def success(self) -> bool:
        return True

    @property
    def message(self) -> str | None:
        return self.text or None

    @property
    def error(self) -> str | None:
        return None


ToolResult = StructuredResult | OpaqueResult


def interpret_result(raw: str | Mapping[str, Any] | None) -> ToolResult:
    """Interpret a serialized tool result.

    Args:
        raw: The tool's return value.

    Returns:
        StructuredResult if ``raw`` is (or parses to) a JSON object,
        otherwise OpaqueResult.
    """
    if isinstance(raw, Mapping):
        return StructuredResult(dict(raw))
    if raw is None:
        return OpaqueResult("")

    text = raw.strip()
    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return OpaqueResult(raw)
        if isinstance(parsed, dict):
            return StructuredResult(parsed)
    return OpaqueResult(raw)
