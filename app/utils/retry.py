"""Bounded retry for outbound calls (mail, webhooks, third-party APIs)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

logger = structlog.get_logger("questlink.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """Initial attempt plus ``max_retries`` retries with linear backoff.

    The wait before retry *n* is ``backoff_base * n`` seconds.  Every attempt
    is individually bounded by ``timeout`` seconds when one is set.

    With ``retry_timeouts=False`` an attempt that hit the timeout is not
    repeated.  Cancelling the await does not stop work running in a thread
    (``asyncio.to_thread``), so a timed-out call may still complete on its
    own; repeating it could perform the side effect twice.
    """

    max_retries: int = 2
    backoff_base: float = 0.25
    timeout: float | None = 10.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    retry_timeouts: bool = True
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt_number: int) -> float:
        return self.backoff_base * attempt_number

    def should_retry(self, exc: BaseException) -> bool:
        if not isinstance(exc, self.retry_on):
            return False
        if isinstance(exc, asyncio.TimeoutError):
            return self.retry_timeouts
        return True

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        logger.warning(
            "retry_scheduled",
            fn=getattr(retry_state.fn, "__qualname__", repr(retry_state.fn)),
            attempt_number=retry_state.attempt_number,
            wait_seconds=self.backoff(retry_state.attempt_number),
            error=repr(outcome.exception()) if outcome else None,
        )

    async def run(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``fn(*args, **kwargs)`` under this policy.

        The last exception is re-raised once all attempts are used up.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(self.should_retry),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_base, increment=self.backoff_base),
            before_sleep=self._before_sleep,
            sleep=self.sleep,
            reraise=True,
        ):
            with attempt:
                if self.timeout is None:
                    return await fn(*args, **kwargs)
                return await asyncio.wait_for(fn(*args, **kwargs), timeout=self.timeout)
