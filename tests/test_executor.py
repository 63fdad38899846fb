"""Tests for the orchestration loop."""

from __future__ import annotations

import asyncio
import json

import pytest

from mediaflow.agent.executor import AgentExecutor
from mediaflow.agent.model import NUDGE_MESSAGE, ModelBlockedError
from mediaflow.agent.models import AgentRunResult, ProgressEvent, ProgressStage, ToolCall
from mediaflow.agent.state import ContentPlan, InMemorySessionStore, ProductionState, Scene, Visual
from mediaflow.recovery import ExecutionResult, PolicyTable, RecoveryPolicy, RetryExecutor
from mediaflow.test_utils import ScriptedChatModel, ScriptedTool, ScriptedToolError
from mediaflow.tools.catalog import build_registry

pytestmark = pytest.mark.anyio


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def call(name: str, **args) -> list[ToolCall]:
    return [ToolCall(name=name, args=args)]


def plan_tool(session_id: str = "prod_tides") -> ScriptedTool:
    return ScriptedTool(
        "plan_video",
        [{"success": True, "session_id": session_id, "message": "Planned 3 scenes"}],
    )


def make_executor(
    model: ScriptedChatModel,
    tools: list[ScriptedTool],
    utility_tools: list[ScriptedTool] = (),
    sleep: FakeSleep | None = None,
    **kwargs,
) -> AgentExecutor:
    return AgentExecutor(
        model,
        build_registry(tools),
        utility_tools=utility_tools,
        retry_executor=RetryExecutor(sleep=sleep or FakeSleep()),
        **kwargs,
    )


def payloads(result: AgentRunResult, tool: str) -> list[dict]:
    return [json.loads(m.content) for m in result.messages if m.role == "tool" and m.name == tool]


class EventLog:
    """Progress sink collecting events."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def stages(self) -> list[ProgressStage]:
        return [e.stage for e in self.events]

    def of(self, stage: ProgressStage) -> list[ProgressEvent]:
        return [e for e in self.events if e.stage == stage]


class TestProductionScenarios:
    """End-to-end runs against scripted tools."""

    async def test_transient_failure_falls_back(self):
        """Retries exhaust, the placeholder fallback applies, the result stays usable."""
        visuals = ScriptedTool("generate_visuals", [ScriptedToolError("503 Service Unavailable", status=503)])
        model = ScriptedChatModel(
            [
                call("plan_video", topic="tides"),
                call("generate_visuals", content_plan_id="plan_a"),
                "Your video is ready.",
            ]
        )
        policies = PolicyTable()
        policies.set(
            RecoveryPolicy("generate_visuals", max_retries=2, initial_delay=2.0, fallback_action="use_placeholder")
        )
        sleep = FakeSleep()
        store = InMemorySessionStore()
        log = EventLog()

        executor = make_executor(model, [plan_tool(), visuals], sleep=sleep, policies=policies, store=store)
        result = await executor.run("Make a video about tides", on_progress=log)

        assert visuals.call_count == 3
        assert sleep.delays == [2.0, 4.0]

        payload = payloads(result, "generate_visuals")[0]
        assert payload["success"] is True
        assert payload["fallback"] is True
        assert payload["fallback_action"] == "use_placeholder"
        assert payload["is_placeholder"] is True

        assert result.stage == ProgressStage.COMPLETE
        assert result.final_response == "Your video is ready."
        assert result.is_usable
        assert result.report["fallback_applied"] == 1
        assert result.report["errors"][0]["fallback_applied"] == "use_placeholder"
        assert result.report["errors"][0]["retry_count"] == 2
        assert result.tool_history == ["plan_video", "generate_visuals"]

        retries = log.of(ProgressStage.RETRY)
        assert [e.message for e in retries] == [
            "generate_visuals failed (attempt 1/2). Retrying in 2s...",
            "generate_visuals failed (attempt 2/2). Retrying in 4s...",
        ]
        assert log.of(ProgressStage.FALLBACK)[0].tool == "generate_visuals"
        visual_results = [e for e in log.of(ProgressStage.TOOL_RESULT) if e.tool == "generate_visuals"]
        assert visual_results[0].message.startswith("⚠️ ")
        assert log.of(ProgressStage.SUMMARY)[0].message.endswith("Result is usable.")
        assert log.stages()[-2:] == [ProgressStage.COMPLETE, ProgressStage.SUMMARY]

        state = await store.get("prod_tides")
        assert state.errors[0]["tool"] == "generate_visuals"
        assert state.partial_success_report["is_usable"] is True

    async def test_fatal_failure_not_usable(self):
        plan = ScriptedTool("plan_video", [ScriptedToolError("Invalid API key", status=401)])
        model = ScriptedChatModel([call("plan_video", topic="tides"), "I could not plan the video."])

        result = await make_executor(model, [plan]).run("Make a video about tides")

        assert plan.call_count == 1
        payload = payloads(result, "plan_video")[0]
        assert payload == {
            "success": False,
            "error": "Invalid API key",
            "retry_count": 0,
            "continue_on_failure": False,
        }
        assert result.stage == ProgressStage.COMPLETE
        assert not result.is_usable
        assert result.report["failed"] == 1
        assert result.report["summary"].startswith("Production failed with 1 critical error(s).")

    async def test_fatal_failure_skips_fallback(self):
        """A fatal error on a tool with a fallback is reported, not papered over."""
        visuals = ScriptedTool("generate_visuals", [ScriptedToolError("Unauthorized", status=401)])
        model = ScriptedChatModel(
            [
                call("plan_video", topic="tides"),
                call("generate_visuals", content_plan_id="plan_a"),
                "Visuals could not be generated.",
            ]
        )
        log = EventLog()

        result = await make_executor(model, [plan_tool(), visuals]).run("Make a video", on_progress=log)

        assert visuals.call_count == 1
        payload = payloads(result, "generate_visuals")[0]
        assert payload["success"] is False
        assert payload["continue_on_failure"] is False
        assert "fallback" not in payload
        assert log.of(ProgressStage.FALLBACK) == []

        error = result.report["errors"][0]
        assert error["category"] == "fatal"
        assert error["recoverable"] is False
        assert error["fallback_applied"] is None
        assert result.report["failed"] == 1
        assert result.report["fallback_applied"] == 0
        assert not result.is_usable
        assert result.report["summary"].startswith("Production failed with 1 critical error(s).")

    async def test_iteration_limit(self):
        status = ScriptedTool("get_production_status", [{"success": True, "message": "In progress"}])
        model = ScriptedChatModel([call("get_production_status") for _ in range(5)])
        log = EventLog()

        executor = make_executor(model, [], utility_tools=[status], max_iterations=3)
        result = await executor.run("Make a video", on_progress=log)

        assert result.stage == ProgressStage.LIMIT_REACHED
        assert result.iterations == 3
        assert "Production stopped due to iteration limit (3)." in result.report["summary"]
        assert len(log.of(ProgressStage.LIMIT_REACHED)) == 1
        assert [e.iteration for e in log.of(ProgressStage.WARNING)] == [1, 2, 3]
        assert status.call_count == 1

    async def test_limit_summary_stored_on_session(self):
        model = ScriptedChatModel([call("plan_video", topic="tides"), call("plan_video", topic="tides")])
        store = InMemorySessionStore()

        await make_executor(model, [plan_tool()], store=store, max_iterations=2).run("Make a video")

        state = await store.get("prod_tides")
        assert state.partial_success_report["summary"].endswith("Production stopped due to iteration limit (2).")

    async def test_warning_margin(self):
        model = ScriptedChatModel([call("plan_video", topic=str(i)) for i in range(10)])
        log = EventLog()

        await make_executor(model, [plan_tool()], max_iterations=5, warning_margin=2).run("x", on_progress=log)

        assert [e.iteration for e in log.of(ProgressStage.WARNING)] == [3, 4, 5]


class ErrorlessRetryExecutor(RetryExecutor):
    """Reports a failure without a ToolError."""

    async def execute(self, call, policy, on_retry=None, **kwargs) -> ExecutionResult:
        return ExecutionResult(success=False)


class TestBookkeepingFailures:
    """Internal inconsistencies surface as loop errors."""

    async def test_failure_without_error_raises(self):
        model = ScriptedChatModel([call("plan_video", topic="tides")])
        executor = AgentExecutor(
            model,
            build_registry([plan_tool()]),
            retry_executor=ErrorlessRetryExecutor(),
        )
        log = EventLog()

        with pytest.raises(RuntimeError, match="failed without a ToolError"):
            await executor.run("Make a video", on_progress=log)

        assert log.stages()[-1] == ProgressStage.ERROR


class TestDuplicatesAndCache:
    """Duplicate suppression and cached results."""

    async def test_duplicate_call_skipped(self):
        plan = plan_tool()
        model = ScriptedChatModel([call("plan_video", topic="tides"), call("plan_video", topic="tides")])

        result = await make_executor(model, [plan]).run("Make a video")

        assert plan.call_count == 1
        skipped = payloads(result, "plan_video")[1]
        assert skipped["skipped"] is True
        assert skipped["message"] == "Skipped duplicate plan_video call - already executed for this step"

    async def test_fallback_result_not_deduplicated(self):
        """A call rescued by a fallback may be tried again."""
        visuals = ScriptedTool(
            "generate_visuals",
            [ScriptedToolError("content filtered"), {"success": True, "message": "Generated 3 images"}],
        )
        model = ScriptedChatModel(
            [
                call("plan_video", topic="tides"),
                call("generate_visuals", content_plan_id="plan_a"),
                call("generate_visuals", content_plan_id="plan_a"),
            ]
        )

        result = await make_executor(model, [plan_tool(), visuals]).run("Make a video")

        assert visuals.call_count == 2
        first, second = payloads(result, "generate_visuals")
        assert first["fallback"] is True
        assert second == {"success": True, "message": "Generated 3 images"}

    async def test_cached_result_served(self):
        store = InMemorySessionStore()
        state = ProductionState(
            session_id="prod_cached",
            content_plan=ContentPlan(id="plan_a", scenes=[Scene(id="s0")]),
            visuals=[Visual(prompt_id="s0", image_url="a.png")],
        )
        await store.set("prod_cached", state)
        visuals = ScriptedTool("generate_visuals")
        model = ScriptedChatModel(
            [call("plan_video", topic="tides"), call("generate_visuals", content_plan_id="plan_a")]
        )

        result = await make_executor(model, [plan_tool("prod_cached"), visuals], store=store).run("Make a video")

        assert visuals.call_count == 0
        assert payloads(result, "generate_visuals")[0]["cached"] is True
        assert (await store.get("prod_cached")).visuals[0].image_url == "a.png"

    async def test_logical_failure_can_be_retried(self):
        plan = ScriptedTool(
            "plan_video",
            [
                {"success": False, "error": "topic too vague"},
                {"success": True, "session_id": "prod_ok"},
            ],
        )
        model = ScriptedChatModel([call("plan_video", topic="x"), call("plan_video", topic="x")])

        result = await make_executor(model, [plan]).run("Make a video")

        assert plan.call_count == 2
        assert payloads(result, "plan_video")[0]["success"] is False
        assert result.session_id == "prod_ok"
        assert result.report["total_attempted"] == 1
        assert result.report["succeeded"] == 1


class TestGroupOrder:
    """Group-order enforcement."""

    async def test_blocked_until_content_completes(self):
        visuals = ScriptedTool("generate_visuals")
        model = ScriptedChatModel(
            [
                call("generate_visuals", content_plan_id="plan_a"),
                call("plan_video", topic="tides"),
                call("generate_visuals", content_plan_id="plan_a"),
            ]
        )
        log = EventLog()

        result = await make_executor(model, [plan_tool(), visuals]).run("Make a video", on_progress=log)

        blocked = payloads(result, "generate_visuals")[0]
        assert blocked["success"] is False
        assert blocked["missing_groups"] == ["CONTENT"]
        assert visuals.call_count == 1
        assert result.tool_history == ["plan_video", "generate_visuals"]

        blocked_event = [e for e in log.of(ProgressStage.TOOL_RESULT) if e.tool == "generate_visuals"][0]
        assert blocked_event.success is False

    async def test_enforcement_disabled(self):
        visuals = ScriptedTool("generate_visuals")
        model = ScriptedChatModel([call("generate_visuals", content_plan_id="plan_a")])

        await make_executor(model, [plan_tool(), visuals], enforce_group_order=False).run("Make a video")

        assert visuals.call_count == 1

    async def test_import_optional_until_attempted(self):
        youtube = ScriptedTool("import_youtube_content", [ScriptedToolError("video is private")])
        plan = plan_tool()
        model = ScriptedChatModel(
            [
                call("plan_video", topic="tides"),
                call("import_youtube_content", url="https://youtu.be/dQw4w9WgXcQ"),
                call("plan_video", topic="waves"),
            ]
        )

        result = await make_executor(model, [youtube, plan]).run("Make a video")

        # The first plan runs without any import; after a failed import CONTENT is blocked.
        assert plan.call_count == 1
        assert payloads(result, "plan_video")[1]["missing_groups"] == ["IMPORT"]

    async def test_utility_tools_never_blocked(self):
        mark = ScriptedTool("mark_complete", [{"success": True, "message": "Marked complete"}])
        model = ScriptedChatModel([call("mark_complete")])

        result = await make_executor(model, [plan_tool()], utility_tools=[mark]).run("Make a video")

        assert mark.call_count == 1
        assert payloads(result, "mark_complete")[0]["success"] is True

    async def test_unknown_tool(self):
        model = ScriptedChatModel([call("make_coffee", strength="strong"), "ok"])

        result = await make_executor(model, [plan_tool()]).run("Make a video")

        assert payloads(result, "make_coffee")[0] == {"success": False, "error": "Unknown tool: make_coffee"}
        assert result.stage == ProgressStage.COMPLETE


class TestModelBoundary:
    """Blocked responses and intent hints."""

    async def test_single_block_nudged(self):
        model = ScriptedChatModel([ModelBlockedError(), "Done."])
        log = EventLog()

        result = await make_executor(model, []).run("Make a video", on_progress=log)

        assert result.stage == ProgressStage.COMPLETE
        assert len(model.calls) == 2
        assert model.calls[1][-1].content == NUDGE_MESSAGE
        assert "Retrying" in log.of(ProgressStage.WARNING)[0].message

    async def test_block_after_nudge_raises(self):
        store = InMemorySessionStore()
        model = ScriptedChatModel([call("plan_video", topic="tides"), ModelBlockedError(), ModelBlockedError()])
        log = EventLog()

        with pytest.raises(ModelBlockedError):
            await make_executor(model, [plan_tool()], store=store).run("Make a video", on_progress=log)

        assert log.stages()[-1] == ProgressStage.ERROR
        state = await store.get("prod_tides")
        assert state.errors[-1]["tool"] == "production_agent"
        assert state.errors[-1]["recoverable"] is False
        assert state.partial_success_report["is_usable"] is False

    async def test_nudge_resets_after_good_turn(self):
        model = ScriptedChatModel(
            [ModelBlockedError(), call("plan_video", topic="tides"), ModelBlockedError(), "Done."]
        )

        result = await make_executor(model, [plan_tool()]).run("Make a video")

        assert result.stage == ProgressStage.COMPLETE

    async def test_intent_hint_prepended(self):
        model = ScriptedChatModel(["ok"])
        log = EventLog()

        await make_executor(model, []).run("Summarize https://youtu.be/dQw4w9WgXcQ", on_progress=log)

        first_user = model.calls[0][1]
        assert first_user.role == "user"
        assert first_user.content.startswith("[DETECTED: YouTube URL")
        assert first_user.content.endswith("User Request: Summarize https://youtu.be/dQw4w9WgXcQ")
        assert log.of(ProgressStage.INTENT_DETECTED)[0].message == (
            "Detected YouTube URL: https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        )


class TestSessionsAndCancellation:
    """Session detection, completion summary and cancellation."""

    async def test_session_created(self):
        store = InMemorySessionStore()
        model = ScriptedChatModel([call("plan_video", topic="tides"), "Done."])
        log = EventLog()

        result = await make_executor(model, [plan_tool()], store=store).run("Make a video", on_progress=log)

        assert result.session_id == "prod_tides"
        created = log.of(ProgressStage.SESSION_CREATED)
        assert len(created) == 1
        assert created[0].session_id == "prod_tides"
        assert "prod_tides" in store

        complete = log.of(ProgressStage.COMPLETE)[0]
        assert complete.is_complete
        assert complete.asset_summary is not None
        assert complete.session_id == "prod_tides"

    async def test_placeholder_session_id_rejected(self):
        model = ScriptedChatModel([call("plan_video", topic="tides")])

        result = await make_executor(model, [plan_tool("plan_123")]).run("Make a video")

        assert result.session_id is None

    async def test_non_string_session_id_ignored(self):
        plan = ScriptedTool("plan_video", [{"success": True, "session_id": 42}])
        model = ScriptedChatModel([call("plan_video", topic="tides"), "Done."])

        result = await make_executor(model, [plan]).run("Make a video")

        assert result.stage == ProgressStage.COMPLETE
        assert result.session_id is None
        assert result.report["succeeded"] == 1

    async def test_non_planning_tool_session_ignored(self):
        music = ScriptedTool("generate_music", [{"success": True, "session_id": "prod_music"}])
        model = ScriptedChatModel([call("plan_video", topic="tides"), call("generate_music")])

        result = await make_executor(model, [plan_tool("prod_first"), music]).run("Make a video")

        assert result.session_id == "prod_first"

    async def test_cancelled_before_start(self):
        cancel = asyncio.Event()
        cancel.set()
        model = ScriptedChatModel([call("plan_video", topic="tides")])
        log = EventLog()

        result = await make_executor(model, [plan_tool()]).run("Make a video", on_progress=log, cancel_event=cancel)

        assert result.stage == ProgressStage.CANCELLED
        assert result.iterations == 0
        assert model.calls == []
        assert log.stages()[-1] == ProgressStage.CANCELLED

    async def test_cancelled_mid_run(self):
        cancel = asyncio.Event()
        model = ScriptedChatModel([call("plan_video", topic="tides"), call("generate_music")])

        def on_progress(event: ProgressEvent) -> None:
            if event.stage == ProgressStage.SESSION_CREATED:
                cancel.set()

        result = await make_executor(model, [plan_tool()]).run(
            "Make a video", on_progress=on_progress, cancel_event=cancel
        )

        assert result.stage == ProgressStage.CANCELLED
        assert len(model.calls) == 1

    def test_max_iterations_validated(self):
        with pytest.raises(ValueError):
            AgentExecutor(ScriptedChatModel(), build_registry([]), max_iterations=0)
