"""Per-session error tracking and partial-success reporting."""

from __future__ import annotations

import logging

from .models import PartialSuccessReport, ToolError

logger = logging.getLogger(__name__)


class ErrorTracker:
    """Collects tool errors and success counts for one production session.

    The report is derived from the running counters on every call to
    :meth:`generate_report`; nothing else is stored.
    """

    def __init__(self) -> None:
        self._errors: list[ToolError] = []
        self._total_attempted = 0
        self._succeeded = 0
        self._fallback_applied = 0

    def record_success(self) -> None:
        self._total_attempted += 1
        self._succeeded += 1

    def record_error(self, error: ToolError, fallback_applied: bool = False) -> None:
        """Record a terminal failure, optionally rescued by a fallback."""
        self._total_attempted += 1
        self._errors.append(error)
        if fallback_applied:
            self._fallback_applied += 1

    def get_errors(self) -> list[ToolError]:
        return list(self._errors)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def has_fatal_errors(self) -> bool:
        """Check if any tracked error is non-recoverable."""
        return any(not e.recoverable for e in self._errors)

    def generate_report(self) -> PartialSuccessReport:
        """Build a partial-success report from the current counters."""
        failed = sum(1 for e in self._errors if not e.fallback_applied and not e.recoverable)
        is_usable = not self.has_fatal_errors() and self._succeeded > 0

        if not self._errors:
            summary = "All operations completed successfully."
        elif is_usable:
            summary = (
                f"Production completed with {len(self._errors)} issue(s). "
                f"{self._fallback_applied} fallback(s) applied. Result is usable."
            )
        else:
            if failed:
                reason = f"Production failed with {failed} critical error(s)."
            else:
                reason = f"Production failed: no step succeeded ({len(self._errors)} error(s))."
            summary = f"{reason} Please review the errors and try again."

        return PartialSuccessReport(
            total_attempted=self._total_attempted,
            succeeded=self._succeeded,
            fallback_applied=self._fallback_applied,
            failed=failed,
            errors=self.get_errors(),
            summary=summary,
            is_usable=is_usable,
        )

    def clear(self) -> None:
        self._errors.clear()
        self._total_attempted = 0
        self._succeeded = 0
        self._fallback_applied = 0


def format_errors_for_response(errors: list[ToolError]) -> str:
    """Render errors as a markdown list for the final response.

    Returns an empty string when there are no errors.
    """
    if not errors:
        return ""

    lines = ["## Errors Encountered:\n"]
    for error in errors:
        scene = f" (scene {error.scene_index})" if error.scene_index is not None else ""
        retries = f" ({error.retry_count} retries)" if error.retry_count > 0 else ""
        fallback = f" → Fallback: {error.fallback_applied}" if error.fallback_applied else ""
        lines.append(f"- **{error.tool}**{scene}: {error.message}{retries}{fallback}")

    return "\n".join(lines)
