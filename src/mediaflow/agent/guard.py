"""Duplicate-call suppression and the session result cache.

DuplicateGuard remembers which tools completed for which step within one
run. check_result_cache answers a call from assets the session record
already holds, so regenerating them is skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .state import ProductionState
from .steps import create_step_identifier

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """Per-run record of tool names executed per step identifier."""

    def __init__(self) -> None:
        self._executed: dict[str, set[str]] = {}

    def step_id(self, tool_name: str, args: Mapping[str, Any] | None) -> str:
        return create_step_identifier(tool_name, args)

    def is_duplicate(self, tool_name: str, args: Mapping[str, Any] | None) -> bool:
        step = self.step_id(tool_name, args)
        return tool_name in self._executed.get(step, set())

    def mark_executed(self, tool_name: str, args: Mapping[str, Any] | None) -> str:
        step = self.step_id(tool_name, args)
        self._executed.setdefault(step, set()).add(tool_name)
        return step

    def skipped_payload(self, tool_name: str) -> dict[str, Any]:
        """Result returned to the model instead of re-running a step."""
        return {
            "success": True,
            "skipped": True,
            "message": f"Skipped duplicate {tool_name} call - already executed for this step",
        }

    def clear(self) -> None:
        self._executed.clear()

    def __len__(self) -> int:
        return sum(len(tools) for tools in self._executed.values())


def _scene_index(args: Mapping[str, Any]) -> int | None:
    value = args.get("scene_index", args.get("sceneIndex"))
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def check_result_cache(
    tool_name: str,
    args: Mapping[str, Any],
    state: ProductionState | None,
) -> dict[str, Any] | None:
    """Return a cached result payload if ``state`` already holds this tool's output.

    Args:
        tool_name: Tool being called.
        args: Call arguments.
        state: Current session record, or None before a session exists.

    Returns:
        A ``{"success": True, "cached": True, ...}`` payload, or None.
    """
    if state is None:
        return None

    plan = state.content_plan
    scene_count = len(plan.scenes) if plan else 0

    if tool_name == "generate_visuals":
        if plan and state.visuals and len(state.visuals) >= scene_count and all(v.image_url for v in state.visuals):
            return {
                "success": True,
                "cached": True,
                "visual_count": len(state.visuals),
                "message": f"Visuals already exist ({len(state.visuals)}) - using cached results",
            }

    elif tool_name == "narrate_scenes":
        segments = state.narration_segments
        if plan and segments and len(segments) >= scene_count and all(s.audio_url for s in segments):
            return {
                "success": True,
                "cached": True,
                "segment_count": len(segments),
                "total_duration": plan.total_duration,
                "message": f"Narration already exists ({len(segments)} segments) - using cached results",
            }

    elif tool_name == "plan_sfx":
        if state.sfx_plan and state.sfx_plan.scenes:
            count = len(state.sfx_plan.scenes)
            return {
                "success": True,
                "cached": True,
                "scene_count": count,
                "message": f"SFX plan already exists ({count} scenes) - using cached results",
            }

    elif tool_name == "mix_audio_tracks":
        if state.mixed_audio and state.mixed_audio.audio_url:
            return {
                "success": True,
                "cached": True,
                "duration": state.mixed_audio.duration,
                "message": "Audio already mixed - using cached results",
            }

    elif tool_name == "generate_subtitles":
        if state.subtitles and state.subtitles.content:
            return {
                "success": True,
                "cached": True,
                "format": state.subtitles.format,
                "segment_count": state.subtitles.segment_count,
                "message": f"Subtitles already generated ({state.subtitles.format}) - using cached results",
            }

    elif tool_name == "export_final_video":
        export = state.export_result
        if export and (export.video_url or export.download_url):
            return {
                "success": True,
                "cached": True,
                "format": export.format,
                "duration": export.duration,
                "download_url": export.download_url,
                "message": f"Video already exported ({export.format}) - using cached results",
            }

    elif tool_name == "animate_image":
        index = _scene_index(args)
        if index is not None and 0 <= index < len(state.visuals) and state.visuals[index].video_url:
            return {
                "success": True,
                "cached": True,
                "scene_index": index,
                "message": f"Scene {index} already animated - using cached results",
            }

    return None
