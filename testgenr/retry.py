"""Retry logic with backoff for model invocation.

A model call is paid for once the provider has accepted the request, so
only failures where the request certainly was not processed are retried.

Transient (Retryable):
- Connection errors and connect timeouts (request never sent)
- Throttling (429)

Permanent (Not Retryable):
- Read timeouts (the request may have been processed)
- Server errors (5xx)
- Client errors (4xx except 429), including signature mismatches (403)
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

# HTTP status codes returned before the provider does any work
RETRYABLE_STATUS_CODES = {429}


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error is transient and safe to retry.

    Args:
        error: The exception that was raised.

    Returns:
        True if the request can be sent again without risk of running
        the model twice, False otherwise.
    """
    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES

    return False


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    max_attempts: int = 3,
    delays: Sequence[float] = (1.0, 2.0),
    args: tuple = (),
    kwargs: Optional[dict] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Await a coroutine function with retry logic and backoff.

    Args:
        func: The coroutine function to call.
        max_attempts: Maximum number of attempts (including first try).
        delays: Delays (seconds) between retries. delays[0] is used after
                the first failure; the last value repeats.
        args: Positional arguments to pass to func.
        kwargs: Keyword arguments to pass to func.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        The return value of func if successful.

    Raises:
        RetryExhausted: If all attempts fail with retryable errors.
        Exception: If a non-retryable error occurs, it's raised immediately.
    """
    if kwargs is None:
        kwargs = {}

    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                raise

            if attempt >= max_attempts:
                raise RetryExhausted(
                    f"Operation failed after {max_attempts} attempts",
                    attempts=max_attempts,
                    last_error=last_error,
                ) from last_error

            delay_index = min(attempt - 1, len(delays) - 1)
            await sleep(delays[delay_index])

    raise RetryExhausted(
        f"Operation failed after {max_attempts} attempts",
        attempts=max_attempts,
        last_error=last_error,
    )
