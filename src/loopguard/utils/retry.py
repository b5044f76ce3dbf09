"""Backoff, timeout and retry primitives shared by the execution guards.

Durations are in seconds. Nothing here schedules background work: the only
construct that races two events is ``with_timeout``, and its timer is always
cancelled whichever side finishes first.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loopguard.execution.error_classifier import ErrorClass, classify_error
from loopguard.utils.logger import get_logger, truncate_for_log

logger = get_logger(__name__)

T = TypeVar("T")

# Timeout for a single LLM API call
LLM_TIMEOUT_SECONDS = 2 * 60.0

# Per-step wall-clock budget
STEP_TIMEOUT_SECONDS = 5 * 60.0

# Default per-tool execution timeout (callers may override per tool)
TOOL_TIMEOUT_SECONDS = 30.0

INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0
BACKOFF_MULTIPLIER = 2.0

# Jitter is applied as +/- this fraction of the capped delay
JITTER_RATIO = 0.25


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff with jitter.

    Attributes:
        max_retries: Retry attempts after the first call (default: 3)
        initial_delay: Delay before the first retry in seconds (default: 1.0)
        max_delay: Cap on any single delay in seconds (default: 30.0)
        multiplier: Exponential growth factor (default: 2.0)
        jitter: Apply +/-25% uniform jitter (default: True)
    """

    max_retries: int = 3
    initial_delay: float = INITIAL_BACKOFF_SECONDS
    max_delay: float = MAX_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER
    jitter: bool = True


class OperationTimeoutError(TimeoutError):
    """Raised by ``with_timeout`` when the deadline passes first."""

    def __init__(self, message: str, label: str, timeout: float):
        super().__init__(message)
        self.label = label
        self.timeout = timeout


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self, message: str, attempts: int, last_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


def calculate_backoff_delay(
    attempt: int,
    initial_delay: float = INITIAL_BACKOFF_SECONDS,
    max_delay: float = MAX_BACKOFF_SECONDS,
    multiplier: float = BACKOFF_MULTIPLIER,
    jitter: bool = True,
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: The attempt number (0-indexed)
        initial_delay: Delay for attempt 0 in seconds
        max_delay: Cap applied before jitter, in seconds
        multiplier: Growth factor per attempt
        jitter: Whether to apply +/-25% uniform jitter

    Returns:
        Non-negative delay in seconds
    """
    base_delay = initial_delay * (multiplier ** max(attempt, 0))
    capped_delay = min(base_delay, max_delay)

    if jitter:
        spread = random.uniform(-1.0, 1.0)  # nosec B311 - jitter, not crypto
        capped_delay += capped_delay * JITTER_RATIO * spread

    return max(0.0, capped_delay)


async def with_timeout(
    operation: Awaitable[T], timeout: float, label: str = "operation"
) -> T:
    """
    Race an awaitable against a deadline.

    Args:
        operation: Coroutine or future to await
        timeout: Deadline in seconds
        label: Human-readable name used in the timeout message

    Returns:
        The operation's result

    Raises:
        OperationTimeoutError: If the deadline passes first. The message reads
            "<label> timed out after <N>s", which ``classify_error`` treats as
            input-dependent.
        Exception: Whatever the operation itself raises
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{label} timed out after {timeout:g}s")
        raise OperationTimeoutError(
            f"{label} timed out after {timeout:g}s", label=label, timeout=timeout
        ) from e


async def sleep(seconds: float) -> None:
    """Sleep for the given number of seconds."""
    await asyncio.sleep(seconds)


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    config: Optional[BackoffConfig] = None,
    label: str = "operation",
    *args,
    **kwargs,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Errors classified as NON_RETRYABLE are re-raised immediately; retrying a
    quota or billing failure only burns more quota.

    Args:
        func: The async function to retry
        config: Backoff configuration (uses defaults if not provided)
        label: Name of the operation for logging
        *args: Arguments to pass to the function
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The result of the first successful call

    Raises:
        RetryExhaustedError: If every attempt failed
        Exception: A non-retryable error from the function
    """
    if config is None:
        config = BackoffConfig()

    last_exception: Optional[Exception] = None
    start_time = time.time()

    for attempt in range(config.max_retries + 1):
        if attempt > 0:
            delay = calculate_backoff_delay(
                attempt - 1,
                initial_delay=config.initial_delay,
                max_delay=config.max_delay,
                multiplier=config.multiplier,
                jitter=config.jitter,
            )
            logger.info(
                f"Retrying {label} (attempt {attempt + 1}/{config.max_retries + 1}) "
                f"after {delay:.2f}s delay"
            )
            await sleep(delay)

        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(
                    f"Successfully retried {label} after {attempt} attempts "
                    f"(total {time.time() - start_time:.2f}s)"
                )
            return result
        except Exception as e:
            last_exception = e
            if classify_error(str(e)) == ErrorClass.NON_RETRYABLE:
                logger.error(f"Non-retryable error in {label}: {truncate_for_log(e)}")
                raise
            logger.warning(
                f"Attempt {attempt + 1} for {label} failed: {truncate_for_log(e)}"
            )

    raise RetryExhaustedError(
        f"All {config.max_retries + 1} attempts failed for {label}",
        attempts=config.max_retries + 1,
        last_exception=last_exception,
    ) from last_exception
