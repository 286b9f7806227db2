"""Bounded retry with fixed backoff for calls to external services.

Only throttling (HTTP 429) and server errors (HTTP >= 500) are retried.
Everything else propagates on the first failure.  When the attempts are
exhausted the last error is wrapped in ``CompletionError`` so the pipeline
can mark the message failed and let the queue redeliver it.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

import structlog

from ..errors import CompletionError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Completion service: 3 attempts, 1s / 2s / 4s
MAX_ATTEMPTS = 3
RETRY_DELAYS: Sequence[float] = (1.0, 2.0, 4.0)


def status_of(exc: BaseException) -> int | None:
    """HTTP status carried by an SDK exception, if any."""
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def is_retryable(exc: BaseException) -> bool:
    """Throttling and server-side failures are worth another attempt."""
    status = status_of(exc)
    return status is not None and (status == 429 or status >= 500)


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    operation: str,
    attempts: int = MAX_ATTEMPTS,
    delays: Sequence[float] = RETRY_DELAYS,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Invoke *call* up to *attempts* times.

    The delay before retry ``n`` (1-based) is ``delays[n - 1]``; the last
    delay is reused if *delays* is shorter than the number of retries.
    """
    sleep = sleep or asyncio.sleep
    last_exc: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as exc:
            if not retryable(exc):
                raise
            last_exc = exc
            if attempt >= attempts:
                break
            delay = delays[min(attempt - 1, len(delays) - 1)]
            logger.warning(
                "external_call_retry",
                operation=operation,
                attempt=attempt,
                delay=delay,
                status=status_of(exc),
                error=str(exc),
            )
            await sleep(delay)

    logger.error(
        "external_call_exhausted_retries",
        operation=operation,
        attempts=attempts,
        status=status_of(last_exc) if last_exc else None,
        error=str(last_exc),
    )
    raise CompletionError(
        f"{operation} failed after {attempts} attempts: {last_exc}",
        attempts=attempts,
        last_status=status_of(last_exc) if last_exc else None,
    ) from last_exc
