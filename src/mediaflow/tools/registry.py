"""Tool dependency registry.

Tools are grouped into ordered phases:

    IMPORT -> CONTENT -> MEDIA -> ENHANCEMENT -> EXPORT

A tool may run once every group before its own is complete. IMPORT is
optional: it is not required when no IMPORT tool is registered.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ToolRegistrationError
from .base import Tool

logger = logging.getLogger(__name__)


class ToolGroup(str, Enum):
    """Dependency-ordered tool phases."""

    IMPORT = "IMPORT"  # External content import (YouTube, audio files)
    CONTENT = "CONTENT"  # Content planning
    MEDIA = "MEDIA"  # Asset generation
    ENHANCEMENT = "ENHANCEMENT"  # Post-processing
    EXPORT = "EXPORT"  # Final output

    @property
    def order(self) -> int:
        return TOOL_GROUP_ORDER.index(self)


TOOL_GROUP_ORDER: list[ToolGroup] = [
    ToolGroup.IMPORT,
    ToolGroup.CONTENT,
    ToolGroup.MEDIA,
    ToolGroup.ENHANCEMENT,
    ToolGroup.EXPORT,
]


@dataclass
class ToolDefinition:
    """A tool and its place in the group order."""

    name: str
    group: ToolGroup
    tool: Tool | None = None
    dependencies: list[str] = field(default_factory=list)
    description: str = ""
    registered_at: datetime = field(default_factory=datetime.now)


@dataclass
class OrderViolation:
    """A tool that ran after a tool from a later group."""

    tool: str
    expected_after: list[ToolGroup]
    actual_position: int


@dataclass
class OrderValidation:
    is_valid: bool
    violations: list[OrderViolation]


class ToolRegistry:
    """Registry of tools indexed by name and group."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._group_index: dict[ToolGroup, list[str]] = {g: [] for g in TOOL_GROUP_ORDER}

    def register(self, definition: ToolDefinition) -> None:
        """Register a tool.

        Raises:
            ToolRegistrationError: If a tool with the same name exists.
        """
        if definition.name in self._tools:
            raise ToolRegistrationError(f'Tool "{definition.name}" is already registered')
        self._tools[definition.name] = definition
        self._group_index[definition.group].append(definition.name)
        logger.debug(f"Registered tool {definition.name} in {definition.group.value}")

    def register_all(self, definitions: Iterable[ToolDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def unregister(self, name: str) -> bool:
        definition = self._tools.pop(name, None)
        if definition is None:
            return False
        self._group_index[definition.group].remove(name)
        return True

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_tool_instance(self, name: str) -> Tool | None:
        definition = self._tools.get(name)
        return definition.tool if definition else None

    def get_tools_by_group(self, group: ToolGroup) -> list[ToolDefinition]:
        return [self._tools[name] for name in self._group_index[group]]

    def get_all_tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def get_tool_group(self, name: str) -> ToolGroup | None:
        definition = self._tools.get(name)
        return definition.group if definition else None

    def can_execute(self, tool_name: str, completed_groups: Iterable[ToolGroup]) -> bool:
        """Check whether a tool's preceding groups and dependencies are complete.

        Args:
            tool_name: Registered tool name. Unknown tools cannot execute.
            completed_groups: Groups already completed in the session.

        Returns:
            True if the tool may run now.
        """
        definition = self._tools.get(tool_name)
        if definition is None:
            return False
        return not self.missing_groups(tool_name, completed_groups)

    def missing_groups(self, tool_name: str, completed_groups: Iterable[ToolGroup]) -> list[ToolGroup]:
        """Groups that must still complete before ``tool_name`` may run."""
        definition = self._tools.get(tool_name)
        if definition is None:
            return []

        completed = set(completed_groups)
        missing: list[ToolGroup] = []
        for group in TOOL_GROUP_ORDER[: definition.group.order]:
            if group == ToolGroup.IMPORT and not self._group_index[ToolGroup.IMPORT]:
                continue
            if group not in completed:
                missing.append(group)

        for dep in definition.dependencies:
            dep_group = self.get_tool_group(dep)
            if dep_group is not None and dep_group not in completed and dep_group not in missing:
                missing.append(dep_group)

        return missing

    def validate_execution_order(self, sequence: Iterable[str]) -> OrderValidation:
        """Detect backward group transitions in a historical tool sequence.

        A tool is a violation when a tool from a later group already
        appeared earlier in the sequence. Unregistered names are ignored.
        """
        violations: list[OrderViolation] = []
        seen: set[ToolGroup] = set()

        for position, name in enumerate(sequence):
            definition = self._tools.get(name)
            if definition is None:
                continue

            current = definition.group.order
            if any(g in seen for g in TOOL_GROUP_ORDER[current + 1 :]):
                violations.append(
                    OrderViolation(
                        tool=name,
                        expected_after=TOOL_GROUP_ORDER[:current],
                        actual_position=position,
                    )
                )
            seen.add(definition.group)

        return OrderValidation(is_valid=not violations, violations=violations)

    def get_required_preceding_groups(self, tool_name: str) -> list[ToolGroup]:
        definition = self._tools.get(tool_name)
        if definition is None:
            return []
        return TOOL_GROUP_ORDER[: definition.group.order]

    def get_executable_tools(self, completed_groups: Iterable[ToolGroup]) -> list[str]:
        completed = set(completed_groups)
        return [name for name in self._tools if self.can_execute(name, completed)]

    def get_summary(self) -> dict[str, dict[str, Any]]:
        """Tool counts and names per group."""
        return {
            group.value: {"count": len(names), "tools": list(names)}
            for group, names in self._group_index.items()
        }

    def clear(self) -> None:
        self._tools.clear()
        for names in self._group_index.values():
            names.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def is_valid_group_transition(from_group: ToolGroup | None, to_group: ToolGroup) -> bool:
    """Check a single step between groups.

    A fresh start may only enter IMPORT or CONTENT. Afterwards a
    transition may stay in the same group or move forward.
    """
    if from_group is None:
        return to_group in (ToolGroup.IMPORT, ToolGroup.CONTENT)
    return to_group.order >= from_group.order


def get_next_group(group: ToolGroup) -> ToolGroup | None:
    if group.order >= len(TOOL_GROUP_ORDER) - 1:
        return None
    return TOOL_GROUP_ORDER[group.order + 1]


def get_group_dependency_description() -> str:
    """Human-readable description of the group order, for system prompts."""
    return (
        "Tool Group Dependencies:\n"
        "- IMPORT: External content import (YouTube, audio files) - Run first if importing\n"
        "- CONTENT: Content planning (plan_video, narrate_scenes, validate_plan) - Core planning\n"
        "- MEDIA: Asset generation (generate_visuals, animate_image, generate_music, plan_sfx)\n"
        "- ENHANCEMENT: Post-processing (remove_background, restyle_image, mix_audio_tracks)\n"
        "- EXPORT: Final output (generate_subtitles, export_final_video)\n"
        "\n"
        "Execution Order: IMPORT → CONTENT → MEDIA → ENHANCEMENT → EXPORT\n"
        "Note: IMPORT is optional - skip directly to CONTENT for topic-based videos."
    )
