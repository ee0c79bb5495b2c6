"""Bounded retry with increasing delay for provider calls."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .errors import TerminalFailure, TransportError, is_retryable


logger = logging.getLogger(__name__)


class CallState(str, Enum):
    """Lifecycle of one provider call across attempts."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


_TRANSITIONS = {
    CallState.PENDING: {CallState.SUCCEEDED, CallState.RETRYABLE_FAILURE, CallState.TERMINAL_FAILURE},
    CallState.RETRYABLE_FAILURE: {CallState.PENDING, CallState.TERMINAL_FAILURE},
    CallState.SUCCEEDED: set(),
    CallState.TERMINAL_FAILURE: set(),
}


@dataclass
class ProviderCallOutcome:
    """Attempt history for one provider call; owned by a single task."""

    label: str = ""
    state: CallState = CallState.PENDING
    attempts: int = 0
    errors: List[str] = field(default_factory=list)
    last_error: Optional[BaseException] = None

    def transition(self, new_state: CallState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal call transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def settled(self) -> bool:
        return self.state in (CallState.SUCCEEDED, CallState.TERMINAL_FAILURE)

    def abandon(self, reason: str) -> None:
        """Settle an unfinished call as a terminal failure."""
        if self.settled:
            return
        self.errors.append(reason)
        self.transition(CallState.TERMINAL_FAILURE)


class RetryController:
    """
    Run an async operation with a bounded attempt budget.

    The delay before attempt k (k >= 2) is ``base_delay * (k - 1)``, so
    waits grow linearly and deterministically. Only failures classified
    as retryable (transport errors, rate limits, server errors) are
    retried; anything else ends the call on the spot.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        attempt_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before the given 1-based attempt."""
        return max(0.0, self.base_delay * (attempt - 1))

    async def _attempt(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        if self.attempt_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Attempt timed out after {self.attempt_timeout}s") from e

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: str = "",
        outcome: Optional[ProviderCallOutcome] = None,
    ) -> Any:
        """
        Execute ``operation`` until it succeeds or the budget is spent.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            label: Label for logging
            outcome: Optional outcome record updated as attempts progress

        Returns:
            Result of the first successful attempt

        Raises:
            TerminalFailure: Carrying the last underlying cause
        """
        outcome = outcome if outcome is not None else ProviderCallOutcome(label=label)

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                outcome.transition(CallState.PENDING)
                wait = self.delay_before(attempt)
                logger.info(f"Retry {attempt}/{self.max_attempts} for {label} in {wait:.1f}s")
                await self._sleep(wait)

            outcome.attempts = attempt
            try:
                result = await self._attempt(operation)
            except Exception as e:
                outcome.last_error = e
                outcome.errors.append(str(e))
                if not is_retryable(e):
                    outcome.transition(CallState.TERMINAL_FAILURE)
                    logger.warning(f"Non-retryable failure for {label} on attempt {attempt}: {e}")
                    raise TerminalFailure(e, attempt, label) from e
                outcome.transition(CallState.RETRYABLE_FAILURE)
                logger.info(f"Attempt {attempt}/{self.max_attempts} for {label} failed: {e}")
                continue

            outcome.transition(CallState.SUCCEEDED)
            return result

        outcome.transition(CallState.TERMINAL_FAILURE)
        logger.warning(f"Failed {label} after {self.max_attempts} attempts: {outcome.last_error}")
        raise TerminalFailure(outcome.last_error, self.max_attempts, label) from outcome.last_error
