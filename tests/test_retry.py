"""Tests for the retry executor."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from mediaflow.recovery.classifier import ErrorCategory
from mediaflow.recovery.policies import RecoveryPolicy
from mediaflow.recovery.retry import RetryExecutor, execute_with_retry

pytestmark = pytest.mark.anyio


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyCall:
    """Fails with the given errors in order, then returns ``result``."""

    def __init__(self, errors: list[BaseException], result: object = "ok"):
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    async def __call__(self) -> object:
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def executor(sleep: FakeSleep) -> RetryExecutor:
    return RetryExecutor(sleep=sleep)


class TestRetryExecutor:
    """Tests for RetryExecutor.execute."""

    async def test_success_first_try(self, executor: RetryExecutor, sleep: FakeSleep):
        call = FlakyCall([])
        result = await executor.execute(call, RecoveryPolicy(tool="t"))

        assert result.success
        assert result.data == "ok"
        assert result.retry_count == 0
        assert call.attempts == 1
        assert sleep.delays == []

    async def test_transient_then_success(self, executor: RetryExecutor, sleep: FakeSleep):
        call = FlakyCall([TimeoutError("timed out"), ConnectionError("reset")])
        result = await executor.execute(call, RecoveryPolicy(tool="t", initial_delay=1.0))

        assert result.success
        assert result.retry_count == 2
        assert call.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_transient_exhaustion(self, executor: RetryExecutor, sleep: FakeSleep):
        """maxRetries=2 means exactly three attempts."""
        call = FlakyCall([Exception("503 Service Unavailable")] * 10)
        policy = RecoveryPolicy(tool="generate_visuals", max_retries=2, fallback_action="use_placeholder")

        result = await executor.execute(call, policy, scene_index=4)

        assert not result.success
        assert call.attempts == 3
        assert result.retry_count == 2
        assert result.error is not None
        assert result.error.tool == "generate_visuals"
        assert result.error.category == ErrorCategory.TRANSIENT
        assert result.error.retry_count == 2
        assert result.error.recoverable is True
        assert result.error.scene_index == 4
        assert result.error.fallback_applied is None

    async def test_fatal_stops_immediately(self, executor: RetryExecutor, sleep: FakeSleep):
        call = FlakyCall([Exception("Invalid API key")] * 5)
        result = await executor.execute(call, RecoveryPolicy(tool="t", max_retries=5))

        assert not result.success
        assert call.attempts == 1
        assert sleep.delays == []
        assert result.error.category == ErrorCategory.FATAL
        assert result.error.recoverable is False

    async def test_recoverable_not_retried(self, executor: RetryExecutor, sleep: FakeSleep):
        call = FlakyCall([ValueError("no scenes in plan")] * 5)
        result = await executor.execute(call, RecoveryPolicy(tool="t"))

        assert call.attempts == 1
        assert result.error.category == ErrorCategory.RECOVERABLE
        assert result.error.recoverable is True

    async def test_continue_on_failure_false_not_recoverable(self, executor: RetryExecutor):
        call = FlakyCall([ValueError("bad")])
        result = await executor.execute(call, RecoveryPolicy(tool="plan_video", continue_on_failure=False))
        assert result.error.recoverable is False

    async def test_backoff_is_clamped(self, executor: RetryExecutor, sleep: FakeSleep):
        call = FlakyCall([TimeoutError()] * 10)
        policy = RecoveryPolicy(tool="t", max_retries=5, initial_delay=2.0, backoff_factor=3.0, max_delay=10.0)

        await executor.execute(call, policy)

        assert sleep.delays == [2.0, 6.0, 10.0, 10.0, 10.0]
        assert all(d <= policy.max_delay for d in sleep.delays)

    async def test_on_retry_observer(self, executor: RetryExecutor):
        first, second = TimeoutError("a"), TimeoutError("b")
        call = FlakyCall([first, second])
        on_retry = Mock()

        await executor.execute(call, RecoveryPolicy(tool="t", initial_delay=0.5), on_retry)

        assert on_retry.call_count == 2
        on_retry.assert_any_call(1, first, 0.5)
        on_retry.assert_any_call(2, second, 1.0)

    async def test_zero_retries(self, executor: RetryExecutor):
        call = FlakyCall([TimeoutError()] * 2)
        result = await executor.execute(call, RecoveryPolicy(tool="t", max_retries=0))
        assert call.attempts == 1
        assert result.retry_count == 0

    async def test_empty_message_uses_type_name(self, executor: RetryExecutor):
        result = await executor.execute(FlakyCall([TimeoutError()]), RecoveryPolicy(tool="t", max_retries=0))
        assert result.error.message == "TimeoutError"


class TestRetryCancellation:
    """Cancellation and deadlines."""

    async def test_cancel_before_retry(self, executor: RetryExecutor, sleep: FakeSleep):
        cancel = asyncio.Event()
        cancel.set()
        call = FlakyCall([TimeoutError()] * 5)

        result = await executor.execute(call, RecoveryPolicy(tool="t"), cancel_event=cancel)

        assert not result.success
        assert call.attempts == 1
        assert sleep.delays == []

    async def test_cancel_during_backoff(self):
        cancel = asyncio.Event()
        call = FlakyCall([TimeoutError()] * 5)

        # Real sleep: the cancel event must win the race.
        executor = RetryExecutor()
        result = await executor.execute(
            call,
            RecoveryPolicy(tool="t", initial_delay=30.0, max_delay=30.0),
            lambda *_: cancel.set(),
            cancel_event=cancel,
        )

        assert not result.success
        assert call.attempts == 1
        assert result.retry_count == 1

    async def test_deadline_stops_retries(self, sleep: FakeSleep):
        executor = RetryExecutor(sleep=sleep, clock=lambda: 100.0)
        call = FlakyCall([TimeoutError()] * 5)

        result = await executor.execute(call, RecoveryPolicy(tool="t", initial_delay=1.0), deadline=100.5)

        assert not result.success
        assert call.attempts == 1
        assert sleep.delays == []


class TestExecuteWithRetry:
    """The module-level convenience wrapper."""

    async def test_retries_with_real_sleep(self):
        call = FlakyCall([ConnectionError("reset")], result={"success": True})

        result = await execute_with_retry(call, RecoveryPolicy(tool="t", initial_delay=0.0, max_delay=0.0))

        assert result.success
        assert result.data == {"success": True}
        assert result.retry_count == 1
