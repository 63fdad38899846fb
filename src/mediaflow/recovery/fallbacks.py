"""Named fallback handlers.

A fallback turns a failed tool call into a degraded but usable result,
e.g. a placeholder image or an asset bundle instead of a finished export.
Handlers receive the ToolError and a context mapping built from the
session record (``scene_index``, ``visuals``, ``narration_segments``,
``music_url``, ``sfx_plan``, ``subtitles``).

Applying a fallback never raises: a missing or failing handler yields
None. Stamping ``ToolError.fallback_applied`` is left to the caller.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from .models import ToolError

logger = logging.getLogger(__name__)

FallbackHandler = Callable[[ToolError, Mapping[str, Any]], Any]


def use_placeholder(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    """Stand in a placeholder for a failed image generation."""
    return {
        "success": True,
        "is_placeholder": True,
        "message": "Using placeholder image due to generation failure",
        "image_url": None,
        "scene_index": context.get("scene_index"),
    }


def use_static_image(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the still image when animation fails."""
    scene = context.get("scene_index")
    return {
        "success": True,
        "is_static": True,
        "message": f"Scene {scene if scene is not None else 'unknown'} will use static image (animation failed)",
        "scene_index": scene,
    }


def keep_original_image(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    """Leave the image untouched when an enhancement fails."""
    scene = context.get("scene_index")
    return {
        "success": True,
        "unchanged": True,
        "message": f"Keeping original image for scene {scene if scene is not None else 'unknown'}",
        "scene_index": scene,
    }


def use_narration_only(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "narration_only": True,
        "message": "Using narration audio only (mixing failed)",
    }


def skip_subtitles(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "skipped": True,
        "message": "Subtitles skipped due to generation failure",
    }


def provide_asset_bundle(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    """Hand over the generated assets for manual assembly when export fails."""
    return {
        "success": True,
        "is_asset_bundle": True,
        "message": "Video export failed. Providing asset bundle for manual assembly.",
        "assets": {
            "visuals": list(context.get("visuals") or []),
            "narration": list(context.get("narration_segments") or []),
            "music": context.get("music_url"),
            "sfx": context.get("sfx_plan"),
            "subtitles": context.get("subtitles"),
        },
    }


def assume_valid(error: ToolError, context: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "assumed": True,
        "score": 70,
        "message": "Validation failed - assuming plan is acceptable",
    }


BUILTIN_FALLBACKS: dict[str, FallbackHandler] = {
    "use_placeholder": use_placeholder,
    "use_static_image": use_static_image,
    "keep_original_image": keep_original_image,
    "use_narration_only": use_narration_only,
    "skip_subtitles": skip_subtitles,
    "provide_asset_bundle": provide_asset_bundle,
    "assume_valid": assume_valid,
}


class FallbackRegistry:
    """Registry of fallback handlers keyed by action name.

    Handlers may be plain functions or coroutine functions.
    """

    def __init__(self, handlers: Mapping[str, FallbackHandler] | None = None):
        self._handlers: dict[str, FallbackHandler] = dict(
            BUILTIN_FALLBACKS if handlers is None else handlers
        )

    def register(self, name: str, handler: FallbackHandler) -> None:
        """Register or replace a handler."""
        self._handlers[name] = handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def apply(
        self,
        action: str,
        error: ToolError,
        context: Mapping[str, Any] | None = None,
    ) -> Any | None:
        """Run the named fallback.

        Args:
            action: Fallback action name from the tool's policy.
            error: The terminal error of the failed call.
            context: Session context for the handler.

        Returns:
            The substitute payload, or None if there is no handler for
            ``action``, the handler raised, or it produced nothing.
        """
        handler = self._handlers.get(action)
        if handler is None:
            logger.warning(f"No fallback handler for: {action}")
            return None

        logger.info(f"Applying fallback {action} for {error.tool}")
        try:
            result = handler(error, context or {})
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception(f"Fallback {action} failed for {error.tool}")
            return None

        return result or None
