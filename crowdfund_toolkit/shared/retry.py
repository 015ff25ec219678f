"""
Retry and polling utilities for handling transient failures.

This module provides:
1. A functional helper for retrying async RPC calls with configurable
   backoff
2. A bounded polling primitive (PollPolicy + poll_until) used to wait out
   confirmation lag without ever spinning indefinitely

Exception Handling:
- By default, retries on RetryableException and network errors
- NonRetryableException is never retried (propagates immediately)
- Can customize retryable_exceptions per operation
"""

import asyncio
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

import httpx

from crowdfund_toolkit.shared.exceptions import RetryableException
from crowdfund_toolkit.shared.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

# Transport-level failures worth another attempt
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    RetryableException,  # Includes LedgerTransportException
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
)


def _compute_delay(
    attempt: int, base_delay: float, max_delay: float, exponential: bool
) -> float:
    if exponential:
        return min(base_delay * (2**attempt), max_delay)
    return base_delay


async def retry_async_operation(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential: bool = True,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    operation_name: Optional[str] = None,
    **kwargs: Any,
) -> T:
    """
    Retry an async operation with configurable backoff.

    Retries on ``retryable_exceptions``; anything else propagates at once.
    """
    if retryable_exceptions is None:
        retryable_exceptions = DEFAULT_RETRYABLE_EXCEPTIONS

    name = operation_name or getattr(operation, "__name__", "operation")
    last_exception: Optional[Exception] = None

    for attempt in range(max_attempts):
        try:
            return await operation(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e

            if attempt < max_attempts - 1:
                delay = _compute_delay(
                    attempt, base_delay, max_delay, exponential
                )
                logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed for "
                    f"{name}: {e}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

    if last_exception:
        raise last_exception
    raise RuntimeError(
        "Unexpected state: no exception but all attempts exhausted"
    )


class RetryConfig:
    """
    Configuration class for retry behavior.

    Can be used to share retry settings across multiple operations.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential: bool = True,
        retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential = exponential
        self.retryable_exceptions = (
            retryable_exceptions or DEFAULT_RETRYABLE_EXCEPTIONS
        )


RPC_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=0.5,
    max_delay=5.0,
    exponential=True,
)


# =============================================================================
# BOUNDED POLLING
# =============================================================================


@dataclass(frozen=True)
class PollPolicy:
    """
    Bounded polling policy.

    Attributes:
        max_attempts: Number of checks performed before giving up (>= 1)
        delay: Seconds slept between two checks
        initial_delay: Seconds slept before the first check
    """

    max_attempts: int = 5
    delay: float = 1.0
    initial_delay: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0 or self.initial_delay < 0:
            raise ValueError("delays must be non-negative")


async def poll_until(
    check: Callable[[], Awaitable[T]],
    policy: PollPolicy,
    done: Callable[[T], bool] = bool,
    operation_name: str = "poll",
) -> Tuple[Optional[T], bool]:
    """
    Run ``check`` until ``done(value)`` holds or attempts are exhausted.

    A check that raises counts as an attempt; the loop always terminates
    after ``policy.max_attempts`` checks. Cancelling the surrounding task
    stops the loop at its next await.

    Returns:
        (last successfully observed value or None, whether done was reached)
    """
    if policy.initial_delay:
        await asyncio.sleep(policy.initial_delay)

    last_value: Optional[T] = None
    for attempt in range(policy.max_attempts):
        try:
            last_value = await check()
            if done(last_value):
                logger.debug(
                    f"{operation_name}: condition met on attempt "
                    f"{attempt + 1}/{policy.max_attempts}"
                )
                return last_value, True
        except Exception as e:
            logger.warning(
                f"{operation_name}: attempt {attempt + 1}/"
                f"{policy.max_attempts} failed: {e}"
            )

        if attempt < policy.max_attempts - 1:
            await asyncio.sleep(policy.delay)

    logger.info(
        f"{operation_name}: condition not met after {policy.max_attempts} attempts"
    )
    return last_value, False
