"""Budget-aware retry controller.

Every external call the pipeline makes, whether a whole-stage operation or
one scene's synthesis, goes through RetryController.run(). It combines two
limits:

1. Attempts: up to max_attempts calls, with exponential backoff between them
   (base_delay * 2**(n-1) before retry n, plus up to `jitter` seconds).
2. Time: the invocation's InvocationBudget. A backoff that would not fit in
   the remaining budget is never slept; the remaining attempts are abandoned
   and the work is left for a future invocation. Each attempt itself runs
   under asyncio.wait_for(remaining) so a hung provider call cannot push the
   invocation past its deadline.

Usage:
    budget = InvocationBudget(25.0)
    retry = RetryController(budget, jitter=0.25)
    result = await retry.run(lambda: port.synthesize_voice(text), max_attempts=3, base_delay=1.0)
    result.value, result.attempts
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
    wait_random,
)

from autopilot.exceptions import (
    BudgetExhaustedError,
    ConfigurationError,
    GenerationAPIError,
    OperationFailedError,
)
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Errors that retrying cannot fix
NON_RETRIABLE_ERRORS = (BudgetExhaustedError, ConfigurationError, GenerationAPIError)


class InvocationBudget:
    """Hard wall-clock deadline for one invocation.

    Args:
        seconds: Total budget, measured from construction.
        clock: Monotonic clock (patched in tests).
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.total = seconds
        self._clock = clock
        self._deadline = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._deadline - self._clock())

    @property
    def exhausted(self) -> bool:
        return self.remaining() <= 0.0

    def __repr__(self) -> str:
        return f"<InvocationBudget(total={self.total}, remaining={self.remaining():.2f})>"


@dataclass
class RetryResult(Generic[T]):
    """Successful outcome of RetryController.run."""

    value: T
    attempts: int


class RetryController:
    """Run async operations with backoff inside an invocation budget.

    Args:
        budget: Deadline shared by every operation in the invocation.
        jitter: Upper bound (seconds) of random jitter added to each backoff.
        sleep: Awaitable sleep; tests inject a recorder to assert delays.
    """

    def __init__(
        self,
        budget: InvocationBudget,
        *,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.budget = budget
        self.jitter = jitter
        self._sleep = sleep

    def _backoff_exceeds_budget(self, retry_state: RetryCallState) -> bool:
        upcoming = retry_state.upcoming_sleep or 0.0
        if upcoming >= self.budget.remaining():
            log.warning(
                "retry_abandoned_budget",
                attempt=retry_state.attempt_number,
                upcoming_sleep=round(upcoming, 3),
                remaining=round(self.budget.remaining(), 3),
            )
            return True
        return False

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        remaining = self.budget.remaining()
        if remaining <= 0:
            raise BudgetExhaustedError("Invocation budget exhausted before attempt")
        try:
            return await asyncio.wait_for(operation(), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise BudgetExhaustedError(
                f"Operation exceeded remaining invocation budget ({remaining:.1f}s)"
            ) from e

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: int,
        base_delay: float,
        label: str = "operation",
    ) -> RetryResult[T]:
        """Call `operation` until it succeeds, attempts run out, or time does.

        Args:
            operation: Zero-arg coroutine factory; called once per attempt.
            max_attempts: Upper bound on calls (>= 1).
            base_delay: Wait before the first retry; doubles each retry.
            label: Name used in log events.

        Returns:
            RetryResult with the value and the number of attempts made.

        Raises:
            BudgetExhaustedError: The budget was already spent; no attempt made.
            OperationFailedError: Every attempt made failed. `abandoned` is
                True when attempts stopped because of the budget.
        """
        if self.budget.exhausted:
            raise BudgetExhaustedError(f"No budget left to start {label}")

        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_any(stop_after_attempt(max_attempts), self._backoff_exceeds_budget),
            wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0)
            + wait_random(0, self.jitter),
            retry=retry_if_not_exception_type(NON_RETRIABLE_ERRORS),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    value = await self._attempt(operation)
        except ConfigurationError:
            raise
        except Exception as e:
            abandoned = isinstance(e, BudgetExhaustedError) or (
                attempts < max_attempts and not isinstance(e, NON_RETRIABLE_ERRORS)
            )
            log.warning(
                "operation_failed",
                label=label,
                attempts=attempts,
                abandoned=abandoned,
                error=f"{type(e).__name__}: {e}",
            )
            raise OperationFailedError(e, attempts, abandoned=abandoned) from e

        if attempts > 1:
            log.info("operation_succeeded_after_retry", label=label, attempts=attempts)
        return RetryResult(value=value, attempts=attempts)
