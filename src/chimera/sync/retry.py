"""Fixed-delay retry policy shared by page fetches, target fetches and batch sends.

Wraps tenacity.AsyncRetrying: `max_retries` retries after the first attempt
(n retries = n + 1 attempts), `retry_delay` milliseconds between attempts,
retrying only the error types the caller marks as transient. The last error
is re-raised unchanged once attempts are exhausted.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.chimera.core.monitoring import sync_retry_attempts_total
from src.chimera.sync.schemas import SyncOptions

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded fixed-delay retry loop.

    `last_attempts` holds the number of attempts made by the most recent
    call(), whether it succeeded or not. One policy instance per store step.
    """

    def __init__(
        self,
        max_retries: int,
        retry_delay_ms: int,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._sleep = sleep
        self.last_attempts = 0

    @classmethod
    def from_options(cls, options: SyncOptions, **kwargs: Any) -> RetryPolicy:
        return cls(options.max_retries, options.retry_delay, **kwargs)

    def _retrying(
        self,
        retry_on: tuple[type[BaseException], ...],
        operation: str,
        context: dict[str, Any],
    ) -> AsyncRetrying:
        def _before_sleep(state: RetryCallState) -> None:
            sync_retry_attempts_total.labels(operation=operation).inc()
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "retry.attempt_failed",
                operation=operation,
                attempt=state.attempt_number,
                max_attempts=self.max_retries + 1,
                error=str(error),
                **context,
            )

        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.retry_delay_ms / 1000),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_before_sleep,
            reraise=True,
            **kwargs,
        )

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        retry_on: tuple[type[BaseException], ...],
        operation: str,
        **context: Any,
    ) -> T:
        """Await `fn()` until it succeeds, a non-retryable error escapes, or attempts run out."""
        self.last_attempts = 0
        async for attempt in self._retrying(retry_on, operation, context):
            with attempt:
                self.last_attempts = attempt.retry_state.attempt_number
                result = await fn()
        return result
