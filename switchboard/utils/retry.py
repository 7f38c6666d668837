"""Retry and backoff utilities for transient failures.

Key Exports:
    backoff_delay: Capped exponential delay with jitter, used by the
        connection supervisor between reconnect attempts.
    async_retry: Decorator retrying an async function on selected exceptions.

Backoff Formula:
    delay = min(maximum, base * 2 ** attempt) * uniform(1 - jitter, 1 + jitter)
    clamped to ``[0, maximum]``. For base=1.0: ~1s, 2s, 4s, 8s, ... 60s.

Jitter spreads reconnects of providers that failed at the same moment (for
example on network loss) so they do not retry in lockstep.
"""

import asyncio
import functools
import random
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    *,
    base: float = 1.0,
    maximum: float = 60.0,
    jitter: float = 0.2,
    rng: random.Random | None = None,
) -> float:
    """Compute the delay before reconnect attempt ``attempt``.

    Args:
        attempt: Zero-based attempt number.
        base: Delay for attempt 0, in seconds.
        maximum: Upper bound for any delay.
        jitter: Relative spread; 0.2 means +/-20%.
        rng: Random source, injectable for deterministic tests.

    Returns:
        Delay in seconds, never negative and never above ``maximum``.
    """
    exponent = min(max(attempt, 0), 32)
    delay = min(maximum, base * (2**exponent))
    if jitter:
        source = rng or random
        delay *= source.uniform(1.0 - jitter, 1.0 + jitter)
    return max(0.0, min(maximum, delay))


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts before giving up.
        backoff_factor: The delay before attempt N is backoff_factor^N seconds.
        exceptions: Exception types that trigger a retry. Others propagate
            immediately.

    Raises:
        The last caught exception if all retry attempts are exhausted.

    Example:
        >>> @async_retry(max_attempts=3, exceptions=(httpx.TransportError,))
        ... async def fetch_metadata(client, url):
        ...     return await client.get(url)
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor**attempt
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator
