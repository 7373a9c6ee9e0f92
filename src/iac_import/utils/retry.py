"""Retry helpers using tenacity.

Provider throttling is the only condition retried automatically; every other
provider failure is reported to the discovery engine on the first attempt.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from iac_import.client.exceptions import ProviderThrottlingError
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_throttled_retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


async def retry_on_throttle(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 5,
    min_wait: float = 1,
    max_wait: float = 30,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying on ProviderThrottlingError.

    Args:
        func: Coroutine function to call
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Minimum backoff in seconds
        max_wait: Maximum backoff in seconds

    Returns:
        Result of the first successful call

    Raises:
        ProviderThrottlingError: If every attempt was throttled
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(ProviderThrottlingError),
        before_sleep=_log_before_sleep,
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
