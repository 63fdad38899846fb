"""Retry executor.

Runs one tool call under a RecoveryPolicy. Only transient failures are
retried, with exponential backoff clamped to the policy's ``max_delay``.
Recoverable failures stop immediately so the caller can apply a fallback;
fatal failures stop immediately and are reported as non-recoverable.

The executor never raises for a failed call: failure is returned as an
ExecutionResult carrying a ToolError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .classifier import ErrorCategory, classify_error
from .models import ExecutionResult, ToolError
from .policies import RecoveryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]
RetryCallback = Callable[[int, BaseException, float], Any]


class RetryExecutor:
    """Execute coroutines with policy-driven retries.

    Args:
        sleep: Coroutine function used for backoff delays. Tests inject a
            recorder so no real time passes.
        clock: Monotonic clock used to honor deadlines.
    """

    def __init__(
        self,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        call: Callable[[], Awaitable[T]],
        policy: RecoveryPolicy,
        on_retry: RetryCallback | None = None,
        *,
        scene_index: int | None = None,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> ExecutionResult[T]:
        """Run ``call`` until it succeeds or the policy says stop.

        Args:
            call: Zero-argument coroutine function performing the tool call.
            policy: Recovery policy for the tool.
            on_retry: Observer called as ``on_retry(attempt, error, delay)``
                before each backoff sleep. ``attempt`` is 1 for the first retry.
            scene_index: Scene the call operates on, copied into the ToolError.
            cancel_event: When set, pending backoff is abandoned and the
                last failure is returned.
            deadline: Absolute ``clock()`` value after which no further
                retry is scheduled.

        Returns:
            ExecutionResult with the call's value, or the terminal ToolError.
        """
        retry_count = 0
        delay = min(policy.initial_delay, policy.max_delay)
        last_error: BaseException | None = None
        category = ErrorCategory.RECOVERABLE

        for attempt in range(policy.max_retries + 1):
            try:
                data = await call()
                return ExecutionResult(success=True, data=data, retry_count=retry_count)
            except Exception as e:
                last_error = e
                category = classify_error(e, policy.tool)
                logger.warning(
                    f"{policy.tool} attempt {attempt + 1}/{policy.max_retries + 1} "
                    f"failed ({category.value}): {e}"
                )

            if category != ErrorCategory.TRANSIENT:
                break
            if attempt >= policy.max_retries:
                break
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"{policy.tool} retries cancelled")
                break
            if deadline is not None and self._clock() + delay > deadline:
                logger.info(f"{policy.tool} retry would pass deadline, giving up")
                break

            retry_count += 1
            if on_retry is not None:
                on_retry(retry_count, last_error, delay)

            if not await self._backoff(delay, cancel_event):
                logger.info(f"{policy.tool} retries cancelled during backoff")
                break
            delay = min(delay * policy.backoff_factor, policy.max_delay)

        if last_error is None:
            raise RuntimeError(f"{policy.tool} stopped retrying without an error")
        error = ToolError(
            tool=policy.tool,
            message=str(last_error) or type(last_error).__name__,
            category=category,
            retry_count=retry_count,
            recoverable=category != ErrorCategory.FATAL and policy.continue_on_failure,
            scene_index=scene_index,
        )
        logger.error(f"{policy.tool} failed after {retry_count} retries: {error.message}")
        return ExecutionResult(success=False, error=error, retry_count=retry_count)

    async def _backoff(self, delay: float, cancel_event: asyncio.Event | None) -> bool:
        """Sleep for ``delay``. Returns False if cancelled first."""
        if cancel_event is None:
            await self._sleep(delay)
            return True

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
        return not cancel_event.is_set()


async def execute_with_retry(
    call: Callable[[], Awaitable[T]],
    policy: RecoveryPolicy,
    on_retry: RetryCallback | None = None,
    **kwargs: Any,
) -> ExecutionResult[T]:
    """Convenience wrapper using a RetryExecutor with real sleeps."""
    return await RetryExecutor().execute(call, policy, on_retry, **kwargs)
