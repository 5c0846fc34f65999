"""
Retry Handler with Exponential Backoff.

Caller-level retries of whole unit invocations. The pipeline itself never
retries an LLM or embedding call; this is opt-in for the worker pool.
"""
import asyncio
import random
import logging
from dataclasses import dataclass
from typing import Callable, Any, TypeVar

from ..errors import RecoveryError, RegenerationExhausted
from .recovery_stats import get_stats

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True

    # Exceptions to retry on
    retryable_exceptions: tuple = (
        RegenerationExhausted,
        asyncio.TimeoutError,
    )


class RetryExhaustedError(RecoveryError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: BaseException = None, attempts: int = 0):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: RetryConfig = None,
    on_retry: Callable[[int, Exception, float], None] = None,
    **kwargs
) -> Any:
    """
    Execute async function with exponential backoff retry.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration
        on_retry: Callback called on each retry (attempt, exception, wait_time)
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        RetryExhaustedError: If all attempts fail with a retryable exception
    """
    if config is None:
        config = RetryConfig()

    wait_time = config.min_wait

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except config.retryable_exceptions as e:
            # Check if this is the last attempt
            if attempt >= config.max_attempts:
                logger.error(f"All {config.max_attempts} retry attempts exhausted")
                raise RetryExhaustedError(
                    f"Failed after {config.max_attempts} attempts: {e}",
                    last_exception=e,
                    attempts=attempt,
                ) from e

            # Calculate wait time with optional jitter
            if config.jitter:
                wait_time = wait_time * (1 + random.random() * 0.5)
            wait_time = min(wait_time, config.max_wait)

            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed: {e}. "
                f"Retrying in {wait_time:.1f}s..."
            )

            get_stats().add_retry(wait_time)
            if on_retry:
                on_retry(attempt, e, wait_time)

            # Wait before retry
            await asyncio.sleep(wait_time)

            # Increase wait time for next attempt
            wait_time *= config.multiplier

    raise RetryExhaustedError(f"No attempts made (max_attempts={config.max_attempts})")
