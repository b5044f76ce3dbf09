"""Per-task bundle of execution guards.

The trackers never call each other; ``ExecutionGuards`` is the wiring an
orchestrator would otherwise write by hand: consult the circuit breaker,
then the deduplicator, then the file tracker before a tool runs, and record
the outcome into all of them afterwards.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loopguard.execution.context_manager import ContextBudgetManager
from loopguard.execution.deduplicator import ToolCallDeduplicator
from loopguard.execution.failure_tracker import ToolFailureTracker
from loopguard.execution.file_tracker import FileOperationTracker
from loopguard.utils.logger import get_logger

logger = get_logger(__name__)

READ_FILE_TOOL = "read_file"
LIST_DIRECTORY_TOOL = "list_directory"
FILE_CREATION_TOOLS = frozenset({"create_document", "write_file", "copy_file"})

DUPLICATE_CALL_SUGGESTION = (
    "This tool was already called with these exact parameters. The previous call "
    "succeeded. Please proceed to the next step or try a different approach."
)


@dataclass
class PreflightDecision:
    """Whether a tool call may run, and what to tell the model if not."""

    allowed: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    cached_result: Optional[str] = None
    cached_files: Optional[List[str]] = None
    warnings: List[str] = field(default_factory=list)

    def to_tool_error(self, tool_name: str) -> str:
        """Render a rejection as a JSON tool_result payload for the model."""
        payload: Dict[str, Any] = {"error": self.reason, "tool": tool_name}
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return json.dumps(payload)


def _creation_target(tool_input: Dict[str, Any]) -> Optional[str]:
    for key in ("filename", "path", "destPath", "dest_path", "destination"):
        value = tool_input.get(key)
        if value:
            return str(value)
    return None


def _listing_files(result: Any) -> List[str]:
    if isinstance(result, list):
        files = []
        for item in result:
            if isinstance(item, dict):
                files.append(str(item.get("name") or item.get("path") or item))
            else:
                files.append(str(item))
        return files
    if isinstance(result, dict) and isinstance(result.get("files"), list):
        return [str(item) for item in result["files"]]
    if isinstance(result, str):
        return [
            part.strip() for part in result.replace(",", "\n").split("\n") if part.strip()
        ]
    return []


def _result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


class ExecutionGuards:
    """One of each tracker, scoped to a single task."""

    def __init__(
        self,
        context_manager: Optional[ContextBudgetManager] = None,
        deduplicator: Optional[ToolCallDeduplicator] = None,
        failure_tracker: Optional[ToolFailureTracker] = None,
        file_tracker: Optional[FileOperationTracker] = None,
    ):
        self.context_manager = context_manager or ContextBudgetManager()
        self.deduplicator = deduplicator or ToolCallDeduplicator()
        self.failure_tracker = failure_tracker or ToolFailureTracker()
        self.file_tracker = file_tracker or FileOperationTracker()

    @classmethod
    def from_settings(
        cls, settings: Any, clock: Optional[Callable[[], float]] = None
    ) -> "ExecutionGuards":
        """Build guards from a GuardSettings instance."""
        return cls(
            context_manager=ContextBudgetManager(
                **settings.to_context_manager_kwargs()
            ),
            deduplicator=ToolCallDeduplicator(
                settings.to_deduplicator_config(), clock=clock
            ),
            failure_tracker=ToolFailureTracker(
                settings.to_failure_tracker_config(), clock=clock
            ),
            file_tracker=FileOperationTracker(
                settings.to_file_tracker_config(), clock=clock
            ),
        )

    def preflight(self, tool_name: str, tool_input: Any) -> PreflightDecision:
        """Decide whether a requested tool call should execute."""
        if self.failure_tracker.is_disabled(tool_name):
            last_error = self.failure_tracker.get_last_error(tool_name)
            return PreflightDecision(
                allowed=False,
                reason=(
                    f'Tool "{tool_name}" is temporarily unavailable due to: '
                    f"{last_error}"
                ),
                suggestion="Please try a different approach or wait and try again later.",
            )

        duplicate = self.deduplicator.check_duplicate(tool_name, tool_input)
        if duplicate.is_duplicate:
            # Only idempotent tools may be answered from cache
            cached = (
                duplicate.cached_result
                if ToolCallDeduplicator.is_idempotent_tool(tool_name)
                else None
            )
            return PreflightDecision(
                allowed=False,
                reason=duplicate.reason,
                suggestion=None if cached else DUPLICATE_CALL_SUGGESTION,
                cached_result=cached,
            )

        return self._check_file_operation(tool_name, tool_input)

    def record_success(self, tool_name: str, tool_input: Any, result: Any = None) -> None:
        """Post-execution bookkeeping for a call that succeeded."""
        self.failure_tracker.record_success(tool_name)
        self.deduplicator.record_call(
            tool_name, tool_input, _result_text(result) if result is not None else None
        )
        self._record_file_operation(tool_name, tool_input, result)

    def record_failure(self, tool_name: str, error: Any) -> bool:
        """
        Post-execution bookkeeping for a call that failed.

        Returns:
            True if the failure disabled the tool
        """
        return self.failure_tracker.record_failure(tool_name, str(error))

    def reset_step(self) -> None:
        """Start a new plan step: forget exact/semantic history, keep everything else."""
        self.deduplicator.reset()

    def _check_file_operation(
        self, tool_name: str, tool_input: Any
    ) -> PreflightDecision:
        if not isinstance(tool_input, dict):
            return PreflightDecision(allowed=True)

        path = tool_input.get("path")
        if tool_name == READ_FILE_TOOL and path:
            check = self.file_tracker.check_file_read(str(path))
            if check.blocked:
                return PreflightDecision(
                    allowed=False, reason=check.reason, suggestion=check.suggestion
                )

        if tool_name == LIST_DIRECTORY_TOOL and path:
            listing = self.file_tracker.check_directory_listing(str(path))
            if listing.blocked and listing.cached_files is not None:
                return PreflightDecision(
                    allowed=False,
                    reason=listing.reason,
                    suggestion=listing.suggestion,
                    cached_result=(
                        f"Directory contents (cached): {', '.join(listing.cached_files)}"
                    ),
                    cached_files=listing.cached_files,
                )

        if tool_name in FILE_CREATION_TOOLS:
            target = _creation_target(tool_input)
            if target:
                creation = self.file_tracker.check_file_creation(target)
                if creation.is_duplicate and creation.suggestion:
                    # Not blocked: the model may have a good reason for a new version
                    logger.warning(f"Duplicate file creation detected: {target}")
                    return PreflightDecision(
                        allowed=True, warnings=[creation.suggestion]
                    )

        return PreflightDecision(allowed=True)

    def _record_file_operation(
        self, tool_name: str, tool_input: Any, result: Any
    ) -> None:
        if not isinstance(tool_input, dict):
            return

        path = tool_input.get("path")
        if tool_name == READ_FILE_TOOL and path:
            self.file_tracker.record_file_read(str(path), len(_result_text(result)))
        elif tool_name == LIST_DIRECTORY_TOOL and path:
            self.file_tracker.record_directory_listing(str(path), _listing_files(result))
        elif tool_name in FILE_CREATION_TOOLS:
            created = None
            if isinstance(result, dict):
                created = result.get("path") or result.get("filename")
            created = created or _creation_target(tool_input)
            if created:
                self.file_tracker.record_file_creation(str(created))
