# src/kinesis_reader/retry.py
"""
Bounded exponential backoff for fallible asynchronous operations.

The executor knows nothing about what it wraps. An error is retried only if
it exposes a truthy `retryable` attribute; anything else ends the attempt
loop immediately. Failures are reported as one of the two `RetryError`
subclasses, which keep every attempt's error for diagnostics.
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar

from kinesis_reader.config import ReaderConfig
from kinesis_reader.exceptions import NonRetryableError, OutOfRetriesError

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times, and how patiently, to retry an operation.

    Attributes:
        max_retries (int): Retries allowed after the first attempt.
        initial_backoff_ms (int): Wait before the first retry.
        dither_factor (float): Jitter added to each wait, as a fraction of
            the current backoff.
    """

    max_retries: int = 10
    initial_backoff_ms: int = 10
    dither_factor: float = 1.0

    @classmethod
    def from_config(cls, reader_config: ReaderConfig) -> "RetryPolicy":
        return cls(
            max_retries=reader_config.max_retries,
            initial_backoff_ms=reader_config.initial_backoff_ms,
            dither_factor=reader_config.backoff_dither_factor,
        )

    def delay_ms(self, backoff_ms: int, rand: float) -> int:
        """
        Computes the wait for one retry.

        Args:
            backoff_ms (int): The current (undithered) backoff.
            rand (float): A uniform sample in `[0, 1)`.

        Returns:
            int: `backoff_ms` plus a whole-millisecond jitter strictly
                smaller than `backoff_ms * dither_factor`.
        """
        return backoff_ms + math.floor(backoff_ms * self.dither_factor * rand)


def is_retryable(error: BaseException) -> bool:
    """Whether `error` marks itself as safe to retry."""
    return bool(getattr(error, "retryable", False))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    sleep: Sleep = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> T:
    """
    Runs `operation`, retrying retryable failures with exponential backoff.

    Args:
        operation (Callable[[], Awaitable[T]]): A zero-argument coroutine
            function. It is called once per attempt.
        policy (RetryPolicy, optional): Retry budget and backoff settings.
        sleep (Sleep): Awaitable sleep taking seconds.
        rand (Callable[[], float]): Source of uniform samples in `[0, 1)`.

    Returns:
        T: The result of the first successful attempt.

    Raises:
        NonRetryableError: An attempt raised an error that is not retryable.
        OutOfRetriesError: Every attempt raised a retryable error.
    """
    policy = policy or RetryPolicy()
    errors: List[Exception] = []
    retries_left: int = policy.max_retries
    backoff_ms: int = policy.initial_backoff_ms

    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise NonRetryableError(e, errors) from e
            if retries_left <= 0:
                raise OutOfRetriesError(e, errors) from e
            errors.append(e)

        retries_left -= 1
        if backoff_ms:
            wait_ms: int = policy.delay_ms(backoff_ms, rand())
            logger.debug(
                f"Attempt {len(errors)} failed with {type(errors[-1]).__name__}; "
                f"retrying in {wait_ms}ms ({retries_left} retries left)."
            )
            await sleep(wait_ms / 1000)
        backoff_ms += backoff_ms
