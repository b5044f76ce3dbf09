"""Execution guards that keep LLM tool-calling loops bounded and recoverable."""

from loopguard.execution import (
    CompactionKind,
    CompactionResult,
    ContextBudgetManager,
    ErrorClass,
    ExecutionGuards,
    FileOperationTracker,
    Message,
    PreflightDecision,
    ToolCallDeduplicator,
    ToolFailureTracker,
    classify_error,
)
from loopguard.utils.retry import (
    BackoffConfig,
    OperationTimeoutError,
    RetryExhaustedError,
    calculate_backoff_delay,
    retry_async,
    with_timeout,
)

__all__ = [
    "CompactionKind",
    "CompactionResult",
    "ContextBudgetManager",
    "ErrorClass",
    "ExecutionGuards",
    "FileOperationTracker",
    "Message",
    "PreflightDecision",
    "ToolCallDeduplicator",
    "ToolFailureTracker",
    "classify_error",
    # Retry utilities
    "BackoffConfig",
    "OperationTimeoutError",
    "RetryExhaustedError",
    "calculate_backoff_delay",
    "retry_async",
    "with_timeout",
]
