"""Production session state and the session store boundary."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..recovery.models import ToolError
from .models import AssetSummary

logger = logging.getLogger(__name__)

_PLACEHOLDER_SESSION_ID = re.compile(r"^(plan_\d+|cp_\d+|session_\d+|plan_\w{3,8}|cp_\w{3,8})$")
SESSION_ID_PREFIXES = ("prod_", "story_")


def is_valid_session_id(session_id: object) -> bool:
    """Check that a session id is a real production id, not a placeholder.

    Models sometimes invent ids like ``plan_123`` or ``cp_abc``; only ids
    issued by the planning tools (``prod_...`` / ``story_...``) are accepted.
    """
    if not isinstance(session_id, str) or not session_id:
        return False
    if _PLACEHOLDER_SESSION_ID.match(session_id):
        return False
    return session_id.startswith(SESSION_ID_PREFIXES)


class Scene(BaseModel):
    id: str = ""
    description: str = ""
    duration: float = 0.0


class ContentPlan(BaseModel):
    id: str | None = None
    scenes: list[Scene] = Field(default_factory=list)
    total_duration: float = 0.0


class NarrationSegment(BaseModel):
    scene_id: str = ""
    audio_url: str | None = None
    duration: float = 0.0


class Visual(BaseModel):
    prompt_id: str = ""
    image_url: str = ""
    video_url: str | None = None
    is_placeholder: bool = False


class SfxPlan(BaseModel):
    scenes: list[dict[str, Any]] = Field(default_factory=list)


class MixedAudio(BaseModel):
    audio_url: str | None = None
    duration: float = 0.0


class Subtitles(BaseModel):
    content: str = ""
    format: str = "srt"
    segment_count: int = 0


class ExportResult(BaseModel):
    video_url: str | None = None
    download_url: str | None = None
    format: str = "mp4"
    duration: float = 0.0


class ProductionState(BaseModel):
    """The mutable record of one production session."""

    session_id: str
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    # Content
    content_plan: ContentPlan | None = None
    imported_content: dict[str, Any] | None = None
    quality_score: float | None = None

    # Media
    narration_segments: list[NarrationSegment] = Field(default_factory=list)
    visuals: list[Visual] = Field(default_factory=list)
    sfx_plan: SfxPlan | None = None
    music_task_id: str | None = None
    music_url: str | None = None

    # Output
    mixed_audio: MixedAudio | None = None
    subtitles: Subtitles | None = None
    export_result: ExportResult | None = None

    # Outcome
    errors: list[dict[str, Any]] = Field(default_factory=list)
    partial_success_report: dict[str, Any] | None = None
    is_complete: bool = False

    def add_error(self, error: ToolError) -> None:
        self.errors.append(error.to_dict())

    def asset_summary(self) -> AssetSummary:
        return AssetSummary(
            scenes=len(self.content_plan.scenes) if self.content_plan else 0,
            narrations=len(self.narration_segments),
            visuals=len(self.visuals),
            music=bool(self.music_task_id or self.music_url),
            sfx=len(self.sfx_plan.scenes) if self.sfx_plan else 0,
            subtitles=self.subtitles is not None,
        )

    def fallback_context(self, args: dict[str, Any] | None = None) -> dict[str, Any]:
        """Context handed to fallback handlers: call arguments plus current assets."""
        context: dict[str, Any] = dict(args or {})
        if "scene_index" not in context and "sceneIndex" in context:
            context["scene_index"] = context["sceneIndex"]
        context.update(
            visuals=[v.model_dump() for v in self.visuals],
            narration_segments=[n.model_dump() for n in self.narration_segments],
            music_url=self.music_url,
            sfx_plan=self.sfx_plan.model_dump() if self.sfx_plan else None,
            subtitles=self.subtitles.model_dump() if self.subtitles else None,
        )
        return context

    def pad_visuals_with_placeholders(self) -> int:
        """Give every planned scene lacking an image a placeholder visual.

        Returns:
            Number of placeholders added.
        """
        if self.content_plan is None:
            return 0

        padded: list[Visual] = []
        added = 0
        for i, scene in enumerate(self.content_plan.scenes):
            current = self.visuals[i] if i < len(self.visuals) else None
            if current is not None and current.image_url:
                padded.append(current)
            else:
                padded.append(Visual(prompt_id=scene.id, image_url="", is_placeholder=True))
                added += 1

        self.visuals = padded
        return added

    def touch(self) -> None:
        self.updated_at = datetime.now().isoformat()


@runtime_checkable
class SessionStore(Protocol):
    """Get/set access to session records. Persistence is the store's concern."""

    async def get(self, session_id: str) -> ProductionState | None: ...

    async def set(self, session_id: str, state: ProductionState) -> None: ...

    def lock(self, session_id: str) -> asyncio.Lock: ...


class InMemorySessionStore:
    """Session store held in process memory.

    Args:
        snapshot_dir: When set, every ``set`` also writes the record as
            ``<snapshot_dir>/<session_id>.json``. Memory stays the source
            of truth; snapshots are only read by :meth:`load_snapshot`.
    """

    def __init__(self, snapshot_dir: Path | str | None = None):
        self._states: dict[str, ProductionState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir else None

    async def get(self, session_id: str) -> ProductionState | None:
        return self._states.get(session_id)

    async def set(self, session_id: str, state: ProductionState) -> None:
        state.touch()
        self._states[session_id] = state
        if self.snapshot_dir is not None:
            self._write_snapshot(session_id, state)

    def lock(self, session_id: str) -> asyncio.Lock:
        """Per-session lock serializing read-modify-write of a record."""
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def snapshot_path(self, session_id: str) -> Path:
        if self.snapshot_dir is None:
            raise ValueError("Snapshots are not enabled for this store")
        return self.snapshot_dir / f"{session_id}.json"

    def _write_snapshot(self, session_id: str, state: ProductionState) -> None:
        path = self.snapshot_path(session_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(state.model_dump_json(indent=2))
        except OSError as e:
            logger.warning(f"Failed to write snapshot for {session_id}: {e}")

    def load_snapshot(self, session_id: str) -> ProductionState | None:
        """Load a snapshot into memory. Returns None if there is none."""
        path = self.snapshot_path(session_id)
        if not path.exists():
            return None
        try:
            state = ProductionState(**json.loads(path.read_text()))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load snapshot {path.name}: {e}")
            return None
        self._states[session_id] = state
        return state

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states

    def __len__(self) -> int:
        return len(self._states)
