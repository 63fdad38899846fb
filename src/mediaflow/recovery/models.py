"""Value types produced by the recovery pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from ..errors import FallbackAlreadyAppliedError
from .classifier import ErrorCategory

T = TypeVar("T")


@dataclass
class ToolError:
    """A terminal failure of one tool call.

    Only ``fallback_applied`` may change after creation, and only once,
    through :meth:`stamp_fallback`.
    """

    tool: str
    message: str
    category: ErrorCategory
    retry_count: int = 0
    recoverable: bool = True
    scene_index: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    fallback_applied: str | None = None

    def stamp_fallback(self, action: str) -> None:
        """Record that ``action`` produced a substitute result for this failure."""
        if self.fallback_applied is not None:
            raise FallbackAlreadyAppliedError(
                f"Fallback already applied to {self.tool} error: {self.fallback_applied}"
            )
        self.fallback_applied = action

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tool": self.tool,
            "scene_index": self.scene_index,
            "message": self.message,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
            "retry_count": self.retry_count,
            "recoverable": self.recoverable,
            "fallback_applied": self.fallback_applied,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolError:
        """Create from dictionary."""
        timestamp = data.get("timestamp")
        return cls(
            tool=data["tool"],
            message=data.get("message", ""),
            category=ErrorCategory(data.get("category", ErrorCategory.RECOVERABLE.value)),
            retry_count=data.get("retry_count", 0),
            recoverable=data.get("recoverable", True),
            scene_index=data.get("scene_index"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
            fallback_applied=data.get("fallback_applied"),
        )


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of running a call under a recovery policy.

    Failure is always a value: ``success`` is False and ``error`` is set.
    """

    success: bool
    data: T | None = None
    error: ToolError | None = None
    fallback_applied: bool = False
    retry_count: int = 0


@dataclass
class PartialSuccessReport:
    """Summary of a production's outcome, derived from an ErrorTracker."""

    total_attempted: int
    succeeded: int
    fallback_applied: int
    failed: int
    errors: list[ToolError]
    summary: str
    is_usable: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_attempted": self.total_attempted,
            "succeeded": self.succeeded,
            "fallback_applied": self.fallback_applied,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary,
            "is_usable": self.is_usable,
        }
