"""Per-task trackers that guard tool execution and context size."""

from .context_manager import (
    CompactionKind,
    CompactionMeta,
    CompactionResult,
    ContextBudgetManager,
    estimate_total_tokens,
    truncate_tool_result,
)
from .deduplicator import DeduplicatorConfig, DuplicateCheck, ToolCallDeduplicator
from .error_classifier import (
    ErrorClass,
    ErrorRule,
    classify_error,
    is_input_dependent_error,
    is_non_retryable_error,
)
from .failure_tracker import FailureTrackerConfig, ToolFailureTracker, ToolHealth
from .file_tracker import (
    DirectoryListingCheck,
    FileCreationCheck,
    FileOperationTracker,
    FileReadCheck,
    FileTrackerConfig,
)
from .guards import ExecutionGuards, PreflightDecision
from .messages import Message, TextBlock, ToolResultBlock, ToolUseBlock

__all__ = [
    # Messages
    "Message",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    # Context budget
    "ContextBudgetManager",
    "CompactionKind",
    "CompactionMeta",
    "CompactionResult",
    "estimate_total_tokens",
    "truncate_tool_result",
    # Deduplication
    "ToolCallDeduplicator",
    "DeduplicatorConfig",
    "DuplicateCheck",
    # Error classification
    "ErrorClass",
    "ErrorRule",
    "classify_error",
    "is_input_dependent_error",
    "is_non_retryable_error",
    # Circuit breaker
    "ToolFailureTracker",
    "FailureTrackerConfig",
    "ToolHealth",
    # File operations
    "FileOperationTracker",
    "FileTrackerConfig",
    "FileReadCheck",
    "DirectoryListingCheck",
    "FileCreationCheck",
    # Wiring
    "ExecutionGuards",
    "PreflightDecision",
]
