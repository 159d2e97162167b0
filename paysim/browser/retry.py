import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_incrementing

from paysim.payment.errors import PaySimError

T = TypeVar("T")

SUBMIT_ATTEMPTS = 3
FILL_ATTEMPTS = 2


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, PaySimError):
        return error.retryable
    return isinstance(error, Exception)


def _log_retry(label: str, attempts: int):
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception()
        logger.bind(event="retry", label=label, attempt=state.attempt_number).warning(
            f"{label} failed (attempt {state.attempt_number}/{attempts}): {error}"
        )
    return before_sleep


async def with_retry(operation: Callable[[], Awaitable[T]], attempts: int, base_delay: float,
                     label: str = "operation",
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Run `operation` up to `attempts` times, sleeping `base_delay * attempt`
    seconds between tries. Errors marked non-retryable propagate at once;
    otherwise the last error propagates.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry(label, attempts),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)
