"""Per-call recovery pipeline.

Runs one tool call through the retry executor, applies the policy's
fallback on terminal failure, records the outcome in the ErrorTracker and
the session record, and renders the payload the model will see.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..recovery import ErrorCategory, ErrorTracker, FallbackRegistry, PolicyTable, RetryExecutor, ToolError
from ..tools.base import Tool, ToolResult, interpret_result
from .models import ProgressEvent, ProgressStage, ToolCall
from .state import ProductionState, SessionStore

logger = logging.getLogger(__name__)

Emit = Callable[[ProgressEvent], None]


@dataclass
class ToolOutcome:
    """What one tool call produced."""

    content: str  # Serialized payload for the conversation
    result: ToolResult
    fallback_applied: bool = False
    error: ToolError | None = None

    @property
    def success(self) -> bool:
        return self.result.success


def _scene_index(args: Mapping[str, Any]) -> int | None:
    value = args.get("scene_index", args.get("sceneIndex"))
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class ToolRunner:
    """Execute tool calls with retries, fallbacks and error tracking."""

    def __init__(
        self,
        policies: PolicyTable,
        fallbacks: FallbackRegistry,
        retry_executor: RetryExecutor,
        store: SessionStore,
    ):
        self.policies = policies
        self.fallbacks = fallbacks
        self.retry_executor = retry_executor
        self.store = store

    async def run(
        self,
        tool: Tool,
        call: ToolCall,
        session_id: str | None,
        tracker: ErrorTracker,
        emit: Emit,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolOutcome:
        """Run ``call`` against ``tool`` and absorb any failure into the outcome."""
        name = call.name
        policy = self.policies.get_recovery_strategy(name)

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            emit(
                ProgressEvent(
                    stage=ProgressStage.RETRY,
                    tool=name,
                    message=f"{name} failed (attempt {attempt}/{policy.max_retries}). "
                    f"Retrying in {round(delay)}s...",
                )
            )

        execution = await self.retry_executor.execute(
            lambda: tool.invoke(call.args),
            policy,
            on_retry,
            scene_index=_scene_index(call.args),
            cancel_event=cancel_event,
        )

        if execution.success:
            result = interpret_result(execution.data)
            content = execution.data if isinstance(execution.data, str) else json.dumps(execution.data)
            if result.success:
                tracker.record_success()
            else:
                logger.warning(f"Tool {name} returned logical failure, allowing retry")
                if result.error and session_id:
                    await self._add_session_error(
                        session_id,
                        ToolError(tool=name, message=result.error, category=ErrorCategory.RECOVERABLE),
                    )
            return ToolOutcome(content=content, result=result)

        error = execution.error
        if error is None:
            raise RuntimeError(f"{name} failed without a ToolError")

        fallback_payload: dict[str, Any] | None = None
        # Fatal failures never fall back.
        can_fall_back = bool(policy.fallback_action and policy.continue_on_failure and error.recoverable)
        if can_fall_back:
            action = policy.fallback_action
            emit(
                ProgressEvent(
                    stage=ProgressStage.FALLBACK,
                    tool=name,
                    message=f"{name} failed. Applying fallback: {action}",
                )
            )
            context = await self._fallback_context(session_id, call.args)
            substitute = await self.fallbacks.apply(action, error, context)
            if substitute is not None:
                if name == "generate_visuals" and session_id:
                    await self._pad_visuals(session_id)
                extra = dict(substitute) if isinstance(substitute, Mapping) else {"result": substitute}
                fallback_payload = {"success": True, "fallback": True, "fallback_action": action, **extra}
                error.stamp_fallback(action)

        if fallback_payload is not None:
            payload = fallback_payload
            tracker.record_error(error, fallback_applied=True)
        else:
            payload = {"success": False, "error": error.message, "retry_count": execution.retry_count}
            if not can_fall_back:
                payload["continue_on_failure"] = error.recoverable
            tracker.record_error(error, fallback_applied=False)

        if session_id:
            await self._add_session_error(session_id, error)

        return ToolOutcome(
            content=json.dumps(payload, default=str),
            result=interpret_result(payload),
            fallback_applied=fallback_payload is not None,
            error=error,
        )

    async def _fallback_context(self, session_id: str | None, args: Mapping[str, Any]) -> dict[str, Any]:
        state = await self.store.get(session_id) if session_id else None
        if state is None:
            context = dict(args)
            context.setdefault("scene_index", _scene_index(args))
            return context
        return state.fallback_context(dict(args))

    async def _add_session_error(self, session_id: str, error: ToolError) -> None:
        async with self.store.lock(session_id):
            state = await self.store.get(session_id)
            if state is None:
                return
            state.add_error(error)
            await self.store.set(session_id, state)

    async def _pad_visuals(self, session_id: str) -> None:
        async with self.store.lock(session_id):
            state: ProductionState | None = await self.store.get(session_id)
            if state is None:
                return
            added = state.pad_visuals_with_placeholders()
            logger.info(f"Applied {added} placeholder visuals for {session_id}")
            await self.store.set(session_id, state)
