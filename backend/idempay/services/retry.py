import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Errors opt out of retry with a falsy ``transient`` attribute; unmarked errors are retried."""
    return bool(getattr(exc, "transient", True))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    multiplier: float = 2.0,
    retry_if: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run ``operation`` up to ``attempts`` times with exponential backoff.

    Delays run base, base*m, base*m^2, ... Only exceptions accepted by
    ``retry_if`` are retried; anything else propagates immediately. When
    attempts run out the last error is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    def _log_retry(state: RetryCallState) -> None:
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.3fs: %s",
            label,
            state.attempt_number,
            attempts,
            state.next_action.sleep,
            state.outcome.exception(),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=multiplier),
        retry=retry_if_exception(retry_if),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    try:
        return await retrying(operation)
    except Exception as exc:
        # A retryable error only escapes once attempts are used up
        if retry_if(exc):
            logger.error("%s failed after %d attempts: %s", label, attempts, exc)
        raise
