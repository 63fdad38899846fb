"""Orchestration loop.

The executor repeatedly asks the model which tools to call, runs each call
through the duplicate guard, the result cache, group-order enforcement and
the ToolRunner's recovery pipeline, and feeds every outcome back into the
conversation. It stops when the model requests no more tools, when the
iteration cap is reached, or when cancelled.

Tool failures never escape a call: they become payloads the model sees.
Only an exception from the loop's own bookkeeping (or the model boundary)
propagates, after the session's partial-success report has been stored.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..recovery import (
    ErrorTracker,
    FallbackRegistry,
    PartialSuccessReport,
    PolicyTable,
    RetryExecutor,
    ToolError,
    classify_error,
)
from ..tools.base import StructuredResult, Tool
from ..tools.registry import ToolGroup, ToolRegistry, get_group_dependency_description
from .guard import DuplicateGuard, check_result_cache
from .intent import analyze_intent, generate_intent_hint
from .model import NUDGE_MESSAGE, ChatModel, ModelBlockedError
from .models import AgentRunResult, Message, ProgressEvent, ProgressStage, ToolCall
from .state import InMemorySessionStore, ProductionState, SessionStore, is_valid_session_id
from .tool_runner import ToolRunner

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 20
DEFAULT_WARNING_MARGIN = 2
PLANNING_TOOLS = ("plan_video", "create_storyboard", "generate_breakdown")

DEFAULT_SYSTEM_PROMPT = (
    "You are a video production agent. Plan the content, generate the media, "
    "enhance it and export the final video by calling the available tools. "
    "Stop calling tools once the production is complete.\n\n" + get_group_dependency_description()
)

ProgressCallback = Callable[[ProgressEvent], Any]


@dataclass
class _RunState:
    """Bookkeeping for one run of the loop."""

    emit: Callable[[ProgressEvent], None]
    cancel_event: asyncio.Event | None
    tracker: ErrorTracker = field(default_factory=ErrorTracker)
    guard: DuplicateGuard = field(default_factory=DuplicateGuard)
    completed_groups: set[ToolGroup] = field(default_factory=set)
    import_attempted: bool = False
    session_id: str | None = None
    history: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class AgentExecutor:
    """Drive a production by letting the model call tools.

    Args:
        model: Chat model deciding which tools to call.
        registry: Grouped production tools.
        utility_tools: Tools outside the group order, callable at any time.
        store: Session store. Defaults to an in-memory store.
        policies: Recovery policy table. Defaults to the built-in table.
        fallbacks: Fallback handlers. Defaults to the built-in handlers.
        retry_executor: Retry executor (inject one with a fake sleep in tests).
        max_iterations: Hard cap on model turns.
        warning_margin: Warn once ``iteration >= max_iterations - warning_margin``.
        enforce_group_order: Block tools whose preceding groups are incomplete.
        planning_tools: Tools whose result may carry a new session id.
        system_prompt: System message for the conversation.
    """

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        *,
        utility_tools: Iterable[Tool] = (),
        store: SessionStore | None = None,
        policies: PolicyTable | None = None,
        fallbacks: FallbackRegistry | None = None,
        retry_executor: RetryExecutor | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        warning_margin: int = DEFAULT_WARNING_MARGIN,
        enforce_group_order: bool = True,
        planning_tools: Sequence[str] = PLANNING_TOOLS,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.model = model
        self.registry = registry
        self.utility_tools: dict[str, Tool] = {t.name: t for t in utility_tools}
        self.store: SessionStore = store if store is not None else InMemorySessionStore()
        self.max_iterations = max_iterations
        self.warning_margin = warning_margin
        self.enforce_group_order = enforce_group_order
        self.planning_tools = frozenset(planning_tools)
        self.system_prompt = system_prompt
        self.runner = ToolRunner(
            policies or PolicyTable(),
            fallbacks or FallbackRegistry(),
            retry_executor or RetryExecutor(),
            self.store,
        )

    @classmethod
    def from_config(
        cls,
        config: Any,
        model: ChatModel,
        registry: ToolRegistry,
        **kwargs: Any,
    ) -> AgentExecutor:
        """Build an executor from a MediaflowConfig."""
        kwargs.setdefault("policies", config.recovery.policy_table())
        kwargs.setdefault("store", InMemorySessionStore(config.store.snapshot_dir or None))
        return cls(
            model,
            registry,
            max_iterations=config.agent.max_iterations,
            warning_margin=config.agent.warning_margin,
            enforce_group_order=config.agent.enforce_group_order,
            planning_tools=config.agent.planning_tools,
            **kwargs,
        )

    @property
    def tool_names(self) -> list[str]:
        return [d.name for d in self.registry.get_all_tools()] + list(self.utility_tools)

    async def run(
        self,
        user_request: str,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AgentRunResult:
        """Run a production for ``user_request``.

        Args:
            user_request: The user's natural language request.
            on_progress: Optional sink for progress events.
            cancel_event: When set, the loop stops before its next step and
                pending retry backoff is abandoned.

        Returns:
            AgentRunResult with the terminal stage, session id, report and
            the full conversation.
        """

        def emit(event: ProgressEvent) -> None:
            if on_progress is None:
                return
            if event.session_id is None:
                event.session_id = run.session_id
            on_progress(event)

        run = _RunState(emit=emit, cancel_event=cancel_event)
        messages = self._initial_messages(user_request, run)

        emit(ProgressEvent(stage=ProgressStage.STARTING, message="Starting video production agent..."))

        iteration = 0
        stage: ProgressStage | None = None
        final_response = ""
        nudged = False

        try:
            while iteration < self.max_iterations:
                if run.cancelled:
                    stage = ProgressStage.CANCELLED
                    break

                iteration += 1
                if iteration >= self.max_iterations - self.warning_margin:
                    logger.warning(f"Approaching iteration limit ({iteration}/{self.max_iterations})")
                    emit(
                        ProgressEvent(
                            stage=ProgressStage.WARNING,
                            message=f"Approaching iteration limit ({iteration}/{self.max_iterations}). "
                            "Production will stop soon if not completed.",
                            iteration=iteration,
                            max_iterations=self.max_iterations,
                        )
                    )

                try:
                    turn = await self.model.generate(messages, self.tool_names)
                except ModelBlockedError:
                    if nudged:
                        raise
                    nudged = True
                    logger.error("Model response blocked. Retrying with a nudge.")
                    emit(
                        ProgressEvent(
                            stage=ProgressStage.WARNING,
                            message="Response blocked by safety filters. Retrying...",
                        )
                    )
                    messages.append(Message(role="user", content=NUDGE_MESSAGE))
                    continue
                nudged = False

                messages.append(Message(role="assistant", content=turn.content, tool_calls=turn.tool_calls))

                if not turn.tool_calls:
                    final_response = turn.content
                    stage = ProgressStage.COMPLETE
                    await self._emit_complete(run)
                    break

                for call in turn.tool_calls:
                    if run.cancelled:
                        break
                    content = await self._handle_call(call, run)
                    messages.append(
                        Message(
                            role="tool",
                            content=content,
                            tool_call_id=call.id or call.name,
                            name=call.name,
                        )
                    )

            if stage is None:
                stage = ProgressStage.CANCELLED if run.cancelled else ProgressStage.LIMIT_REACHED

            report = run.tracker.generate_report()
            if stage == ProgressStage.LIMIT_REACHED:
                logger.warning(f"Iteration limit reached ({self.max_iterations}). Stopping execution.")
                emit(
                    ProgressEvent(
                        stage=ProgressStage.LIMIT_REACHED,
                        message=f"Production stopped: iteration limit ({self.max_iterations}) reached. "
                        "Partial results may be available.",
                        iteration=iteration,
                        max_iterations=self.max_iterations,
                    )
                )
                report.summary += f" Production stopped due to iteration limit ({self.max_iterations})."
            elif stage == ProgressStage.CANCELLED:
                logger.info("Production cancelled")
                emit(
                    ProgressEvent(stage=ProgressStage.CANCELLED, message="Production cancelled.", is_complete=True)
                )

            await self._store_report(run.session_id, report)
            if report.errors:
                logger.info(f"Partial success report: {report.summary}")
                emit(ProgressEvent(stage=ProgressStage.SUMMARY, message=report.summary))

        except Exception as e:
            logger.exception("Production agent failed")
            error = ToolError(
                tool="production_agent",
                message=str(e) or type(e).__name__,
                category=classify_error(e),
                recoverable=False,
            )
            run.tracker.record_error(error)
            await self._store_report(run.session_id, run.tracker.generate_report(), error)
            emit(ProgressEvent(stage=ProgressStage.ERROR, message=error.message, is_complete=True))
            raise

        return AgentRunResult(
            stage=stage,
            session_id=run.session_id,
            iterations=iteration,
            final_response=final_response,
            report=report.to_dict(),
            tool_history=run.history,
            messages=messages,
        )

    def _initial_messages(self, user_request: str, run: _RunState) -> list[Message]:
        intent = analyze_intent(user_request)
        hint = generate_intent_hint(intent)
        logger.info(
            f"Intent analysis: first_tool={intent.first_tool} "
            f"optional_tools={intent.optional_tools} style={intent.detected_style}"
        )

        detected = None
        if intent.has_youtube_url:
            detected = f"Detected YouTube URL: {intent.youtube_url}"
        elif intent.has_audio_file:
            detected = f"Detected audio file: {intent.audio_file_path}"
        if detected:
            run.emit(ProgressEvent(stage=ProgressStage.INTENT_DETECTED, message=detected))

        content = f"{hint}\n\nUser Request: {user_request}" if hint else user_request
        return [Message(role="system", content=self.system_prompt), Message(role="user", content=content)]

    def _resolve(self, name: str) -> Tool | None:
        definition = self.registry.get_tool(name)
        if definition is not None:
            return definition.tool
        return self.utility_tools.get(name)

    def _completed_groups(self, run: _RunState) -> set[ToolGroup]:
        completed = set(run.completed_groups)
        # IMPORT is optional until an import tool is actually tried.
        if not run.import_attempted:
            completed.add(ToolGroup.IMPORT)
        return completed

    async def _handle_call(self, call: ToolCall, run: _RunState) -> str:
        """Run one requested tool call and return the payload for the model."""
        name = call.name
        group = self.registry.get_tool_group(name)

        if run.guard.is_duplicate(name, call.args):
            step = run.guard.step_id(name, call.args)
            logger.warning(f"Skipping duplicate tool call: {name} for step {step}")
            return _dumps(run.guard.skipped_payload(name))

        run.emit(ProgressEvent(stage=ProgressStage.TOOL_CALL, tool=name, message=f"Executing {name}..."))

        state = await self.store.get(run.session_id) if run.session_id else None
        cached = check_result_cache(name, call.args, state)
        if cached is not None:
            logger.info(f"Using cached results for {name}")
            if group is not None:
                run.completed_groups.add(group)
            _emit_result(run, name, f"✓ {cached['message']}", success=True)
            return _dumps(cached)

        tool = self._resolve(name)
        if tool is None:
            logger.error(f"Tool not found: {name}")
            _emit_result(run, name, f"Unknown tool: {name}", success=False)
            return _dumps({"success": False, "error": f"Unknown tool: {name}"})

        if self.enforce_group_order and group is not None:
            missing = self.registry.missing_groups(name, self._completed_groups(run))
            if missing:
                groups = ", ".join(g.value for g in missing)
                logger.warning(f"Blocked {name}: groups not complete: {groups}")
                message = f"{name} cannot run until these tool groups complete: {groups}"
                _emit_result(run, name, message, success=False)
                return _dumps(
                    {"success": False, "error": message, "missing_groups": [g.value for g in missing]}
                )

        if group == ToolGroup.IMPORT:
            run.import_attempted = True
        run.history.append(name)

        outcome = await self.runner.run(tool, call, run.session_id, run.tracker, run.emit, run.cancel_event)

        if outcome.success and group is not None:
            run.completed_groups.add(group)
        if outcome.success and not outcome.fallback_applied:
            run.guard.mark_executed(name, call.args)

        if isinstance(outcome.result, StructuredResult):
            await self._detect_session(name, outcome.result, run)

        prefix = "⚠️ " if outcome.fallback_applied else ""
        message = outcome.result.message or (f"{name} completed" if outcome.success else f"{name} failed")
        _emit_result(run, name, prefix + message, success=outcome.success)
        return outcome.content

    async def _detect_session(self, name: str, result: StructuredResult, run: _RunState) -> None:
        if run.session_id is not None or name not in self.planning_tools:
            return

        session_id = result.payload.get("session_id") or result.payload.get("sessionId")
        if not session_id:
            return
        if not is_valid_session_id(session_id):
            logger.warning(f"Invalid session id format from {name}: {session_id}")
            return

        run.session_id = session_id
        async with self.store.lock(session_id):
            if await self.store.get(session_id) is None:
                await self.store.set(session_id, ProductionState(session_id=session_id))
        logger.info(f"Session created: {session_id}")
        run.emit(
            ProgressEvent(
                stage=ProgressStage.SESSION_CREATED,
                message=f"Session created: {session_id}",
                session_id=session_id,
            )
        )

    async def _emit_complete(self, run: _RunState) -> None:
        state = await self.store.get(run.session_id) if run.session_id else None
        if state is None:
            run.emit(
                ProgressEvent(stage=ProgressStage.COMPLETE, message="Production complete!", is_complete=True)
            )
            return

        summary = state.asset_summary()
        message = (
            f"Production complete! Generated {summary.scenes} scenes with "
            f"{summary.narrations} narrations, {summary.visuals} visuals"
        )
        if summary.music:
            message += ", music"
        if summary.sfx:
            message += f", {summary.sfx} SFX"
        if summary.subtitles:
            message += ", and subtitles"
        run.emit(
            ProgressEvent(
                stage=ProgressStage.COMPLETE,
                message=message + ".",
                is_complete=True,
                asset_summary=summary,
            )
        )

    async def _store_report(
        self,
        session_id: str | None,
        report: PartialSuccessReport,
        error: ToolError | None = None,
    ) -> None:
        if session_id is None:
            return
        async with self.store.lock(session_id):
            state = await self.store.get(session_id)
            if state is None:
                return
            if error is not None:
                state.add_error(error)
            state.partial_success_report = report.to_dict()
            await self.store.set(session_id, state)


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=str)


def _emit_result(run: _RunState, name: str, message: str, *, success: bool) -> None:
    run.emit(ProgressEvent(stage=ProgressStage.TOOL_RESULT, tool=name, message=message, success=success))
