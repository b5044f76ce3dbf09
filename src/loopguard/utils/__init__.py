"""Utility modules for loopguard."""

from loopguard.utils.retry import (
    BackoffConfig,
    OperationTimeoutError,
    RetryExhaustedError,
    calculate_backoff_delay,
    retry_async,
    with_timeout,
)
from loopguard.utils.token_utils import TokenLimitManager, estimate_tokens

__all__ = [
    "BackoffConfig",
    "OperationTimeoutError",
    "RetryExhaustedError",
    "calculate_backoff_delay",
    "retry_async",
    "with_timeout",
    "TokenLimitManager",
    "estimate_tokens",
]
