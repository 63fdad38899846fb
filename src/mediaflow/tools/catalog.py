"""Default tool catalog.

Maps the production tool names to their group and explicit dependencies.
Utility tools such as ``get_production_status`` and ``mark_complete`` are
absent: they belong to no group and may run at any time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import NamedTuple

from .base import Tool
from .registry import ToolDefinition, ToolGroup, ToolRegistry

logger = logging.getLogger(__name__)


class CatalogEntry(NamedTuple):
    group: ToolGroup
    dependencies: tuple[str, ...] = ()
    description: str = ""


TOOL_CATALOG: dict[str, CatalogEntry] = {
    # IMPORT
    "import_youtube_content": CatalogEntry(ToolGroup.IMPORT, (), "Import a YouTube video transcript"),
    "transcribe_audio_file": CatalogEntry(ToolGroup.IMPORT, (), "Transcribe an uploaded audio file"),
    # CONTENT
    "plan_video": CatalogEntry(ToolGroup.CONTENT, (), "Plan scenes for a video"),
    "narrate_scenes": CatalogEntry(ToolGroup.CONTENT, ("plan_video",), "Generate narration per scene"),
    "validate_plan": CatalogEntry(ToolGroup.CONTENT, ("plan_video",), "Score the content plan"),
    "adjust_timing": CatalogEntry(ToolGroup.CONTENT, ("narrate_scenes",), "Sync scene timing to narration"),
    "generate_breakdown": CatalogEntry(ToolGroup.CONTENT, (), "Break a story into acts"),
    "create_screenplay": CatalogEntry(ToolGroup.CONTENT, ("generate_breakdown",), "Write the screenplay"),
    "generate_characters": CatalogEntry(ToolGroup.CONTENT, ("create_screenplay",), "Describe the cast"),
    "generate_shotlist": CatalogEntry(
        ToolGroup.CONTENT, ("create_screenplay", "generate_characters"), "Plan shots per scene"
    ),
    # MEDIA
    "generate_visuals": CatalogEntry(ToolGroup.MEDIA, ("plan_video",), "Generate an image per scene"),
    "generate_video": CatalogEntry(ToolGroup.MEDIA, ("plan_video",), "Generate video clips per scene"),
    "animate_image": CatalogEntry(ToolGroup.MEDIA, ("generate_visuals",), "Animate a scene image"),
    "generate_music": CatalogEntry(ToolGroup.MEDIA, ("plan_video",), "Generate background music"),
    "plan_sfx": CatalogEntry(ToolGroup.MEDIA, ("plan_video",), "Plan sound effects"),
    # ENHANCEMENT
    "verify_character_consistency": CatalogEntry(ToolGroup.ENHANCEMENT, (), "Check characters across scenes"),
    "remove_background": CatalogEntry(ToolGroup.ENHANCEMENT, ("generate_visuals",), "Cut out the subject"),
    "restyle_image": CatalogEntry(ToolGroup.ENHANCEMENT, ("generate_visuals",), "Apply a visual style"),
    "mix_audio_tracks": CatalogEntry(ToolGroup.ENHANCEMENT, ("narrate_scenes",), "Mix narration, music and sfx"),
    # EXPORT
    "generate_subtitles": CatalogEntry(ToolGroup.EXPORT, ("narrate_scenes",), "Generate subtitles"),
    "export_final_video": CatalogEntry(
        ToolGroup.EXPORT, ("generate_visuals", "narrate_scenes"), "Render the final video"
    ),
    "upload_production_to_cloud": CatalogEntry(
        ToolGroup.EXPORT, ("export_final_video",), "Upload the export to cloud storage"
    ),
}


def build_registry(tools: Iterable[Tool]) -> ToolRegistry:
    """Register every catalogued tool among ``tools``.

    Tools without a catalog entry are left out; callers pass them to the
    executor as utility tools.
    """
    registry = ToolRegistry()
    for tool in tools:
        entry = TOOL_CATALOG.get(tool.name)
        if entry is None:
            logger.debug(f"{tool.name} has no catalog entry, not registering")
            continue
        registry.register(
            ToolDefinition(
                name=tool.name,
                group=entry.group,
                tool=tool,
                dependencies=list(entry.dependencies),
                description=entry.description,
            )
        )

    logger.info(f"Registered {len(registry)} tools: {registry.get_summary()}")
    return registry


def build_catalog_registry() -> ToolRegistry:
    """Registry of the whole catalog without tool instances, for order checks."""
    registry = ToolRegistry()
    for name, entry in TOOL_CATALOG.items():
        registry.register(
            ToolDefinition(
                name=name,
                group=entry.group,
                dependencies=list(entry.dependencies),
                description=entry.description,
            )
        )
    return registry
