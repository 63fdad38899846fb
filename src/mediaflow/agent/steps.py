"""Step identifiers for duplicate-call suppression.

A step identifier fingerprints a tool call by its name and the arguments
that identify the pipeline step it works on. Two calls with the same
identifier are the same logical step regardless of call order.

Rules, first match wins:
- scene-scoped: ``{tool}_{content_plan_id or "default"}_scene_{scene_index}``
- plan-scoped: ``{tool}_{content_plan_id}``
- imports: ``{tool}_{url}`` or ``{tool}_{audio_path}``
- other arguments: ``{tool}_{hash}`` over the canonical JSON arguments
- no arguments: ``{tool}``

camelCase and snake_case argument names are both accepted.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

_ALIASES: dict[str, tuple[str, ...]] = {
    "scene_index": ("scene_index", "sceneIndex"),
    "content_plan_id": ("content_plan_id", "contentPlanId"),
    "url": ("url",),
    "audio_path": ("audio_path", "audioPath"),
}


def _arg(args: Mapping[str, Any], key: str) -> Any:
    for alias in _ALIASES[key]:
        value = args.get(alias)
        if value is not None:
            return value
    return None


def fingerprint_args(args: Mapping[str, Any]) -> str:
    """Stable short hash of arguments, independent of key order."""
    canonical = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:12]


def create_step_identifier(tool_name: str, args: Mapping[str, Any] | None = None) -> str:
    """Build the dedup key for a tool call."""
    args = args or {}

    scene_index = _arg(args, "scene_index")
    plan_id = _arg(args, "content_plan_id")
    if scene_index is not None:
        return f"{tool_name}_{plan_id or 'default'}_scene_{scene_index}"
    if plan_id:
        return f"{tool_name}_{plan_id}"

    url = _arg(args, "url")
    if url:
        return f"{tool_name}_{url}"
    audio_path = _arg(args, "audio_path")
    if audio_path:
        return f"{tool_name}_{audio_path}"

    if not args:
        return tool_name
    return f"{tool_name}_{fingerprint_args(args)}"
