"""Exceptions raised by mediaflow itself.

Tool failures are never raised past the per-call boundary; they become
ToolError values. The exceptions here signal misuse of the library or
conditions the orchestration loop handles explicitly.
"""

from __future__ import annotations


class MediaflowError(Exception):
    """Base class for mediaflow errors."""


class ToolRegistrationError(MediaflowError):
    """A tool with the same name is already registered."""


class ModelBlockedError(MediaflowError):
    """The model returned no candidates (e.g. a safety block)."""

    def __init__(self, message: str = "Model returned no candidates", reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class FallbackAlreadyAppliedError(MediaflowError):
    """A ToolError was stamped with a fallback action more than once."""
