"""Tenacity retry helpers for outbound calls."""

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

logger = structlog.get_logger()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_call",
        fn=getattr(retry_state.fn, "__qualname__", str(retry_state.fn)),
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


def with_retry(
    *,
    max_attempts: int,
    initial_wait_seconds: float,
    max_wait_seconds: float,
    multiplier: float = 2.0,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Return a tenacity retry decorator with exponential backoff.

    Usage::

        @with_retry(max_attempts=3, initial_wait_seconds=0.5, max_wait_seconds=5)
        async def classify(text: str) -> ClassificationLabel: ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=multiplier,
            min=initial_wait_seconds,
            max=max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
