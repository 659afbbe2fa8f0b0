"""Tenacity retry policy for record-store writes, driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()


def _log_attempt(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retry_scheduled",
            operation=operation,
            attempt=state.attempt_number,
            wait=round(state.next_action.sleep, 3) if state.next_action else None,
            error_type=type(exc).__name__ if exc else None,
            error=str(exc),
        )

    return before_sleep


def with_retry(
    config: RetryConfig,
    *,
    operation: str = "operation",
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Each scheduled retry is logged as ``retry_scheduled`` with *operation*
    and the backoff wait.  The last exception is re-raised once
    ``max_attempts`` is exhausted.

    Usage::

        @with_retry(settings.retry, operation="store_insert",
                    retryable_exceptions=(PersistenceError,))
        async def save() -> StoredEmail: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_attempt(operation),
        reraise=True,
    )
