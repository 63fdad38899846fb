"""Model boundary.

The orchestration loop talks to a language model through ChatModel. A
model that returns no candidates raises ModelBlockedError; the loop
answers that with a single nudge before giving up.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..errors import ModelBlockedError
from .models import Message, ModelTurn

__all__ = ["ChatModel", "ModelBlockedError", "NUDGE_MESSAGE"]

NUDGE_MESSAGE = "Please continue with the production. Use appropriate creative language."


@runtime_checkable
class ChatModel(Protocol):
    """A language model that can request tool calls."""

    async def generate(self, messages: Sequence[Message], tool_names: Sequence[str]) -> ModelTurn:
        """Return the next turn for ``messages``.

        Raises:
            ModelBlockedError: If the model produced no candidates.
        """
        ...
