"""Circuit breaker over tool names.

Each tool is Healthy, Degraded (failures counted but below threshold) or
Disabled. Failures are split by ``classify_error``:

- non-retryable errors disable the tool on the first occurrence;
- input-dependent errors use their own, higher threshold so a model that is
  slowly converging on correct arguments is not punished;
- everything else is systemic and disables after ``max_tool_failures``.

A disabled tool is re-enabled lazily the first time it is queried after its
cooldown expires. There is no background timer.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from loopguard.execution.error_classifier import ErrorClass, classify_error
from loopguard.utils.logger import get_logger, truncate_for_log

logger = get_logger(__name__)

# Consecutive systemic failures before a tool is disabled
MAX_TOOL_FAILURES = 2

MAX_INPUT_DEPENDENT_FAILURES = 4

TOOL_COOLDOWN_SECONDS = 5 * 60.0

# AppleScript often needs a few iterative syntax/quoting fixes before succeeding
DEFAULT_INPUT_DEPENDENT_OVERRIDES: Dict[str, int] = {"run_applescript": 8}


class ToolHealth(Enum):
    """Circuit state of a single tool."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DISABLED = "disabled"


@dataclass
class FailureTrackerConfig:
    """Thresholds for the tool circuit breaker."""

    max_tool_failures: int = MAX_TOOL_FAILURES
    max_input_dependent_failures: int = MAX_INPUT_DEPENDENT_FAILURES
    cooldown_seconds: float = TOOL_COOLDOWN_SECONDS
    input_dependent_overrides: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_INPUT_DEPENDENT_OVERRIDES)
    )


@dataclass
class FailureRecord:
    count: int = 0
    last_error: str = ""


@dataclass
class DisabledToolRecord:
    disabled_at: float
    reason: str


@dataclass(frozen=True)
class GuidanceRule:
    """Advisory remediation text appended to a tool's last error."""

    suggestion: str
    pattern: Pattern[str]
    tools: Tuple[str, ...] = ()

    def applies(self, tool_name: str, error: str) -> bool:
        if self.tools and tool_name not in self.tools:
            return False
        return bool(self.pattern.search(error))


def _guidance(
    pattern: str, suggestion: str, tools: Tuple[str, ...] = ()
) -> GuidanceRule:
    return GuidanceRule(
        suggestion=suggestion, pattern=re.compile(pattern, re.IGNORECASE), tools=tools
    )


# First match wins
GUIDANCE_RULES: Tuple[GuidanceRule, ...] = (
    _guidance(
        r"syntax error",
        "SUGGESTION: Keep AppleScript minimal and valid. Prefer plain multi-line "
        "AppleScript, avoid malformed \"with timeout ... end timeout\" wrappers, and "
        "escape shell command quotes carefully.",
        ("run_applescript",),
    ),
    _guidance(
        r"timed out",
        "SUGGESTION: Break long shell operations into smaller AppleScript calls, "
        "then verify output incrementally instead of running a long installer or "
        "build in one script.",
        ("run_applescript",),
    ),
    _guidance(
        r"images|binary|size",
        "SUGGESTION: The edit_document tool cannot preserve images in DOCX files. "
        "Create a separate document with the new content only, or provide "
        "instructions for the user to merge the content manually.",
        ("edit_document",),
    ),
    _guidance(
        r"failed",
        "SUGGESTION: If copy+edit approach is not working, try creating new "
        "content in a separate file instead.",
        ("copy_file", "edit_document"),
    ),
    _guidance(
        r"parameter.*required|required.*parameter",
        "SUGGESTION: Ensure all required parameters are provided. Check the tool "
        "documentation for the exact parameter format.",
    ),
    _guidance(
        r"content.*(empty|required)|(empty|required).*content",
        'SUGGESTION: The content parameter must be a non-empty array of content '
        'blocks. Example: [{ type: "paragraph", text: "Your text here" }]',
    ),
    _guidance(
        r"net::ERR_|http2",
        "SUGGESTION: This looks like a site or network specific navigation "
        "failure. Try an alternative web tool (web_fetch or web_search) for "
        "JS-heavy pages.",
        ("browser_navigate",),
    ),
    _guidance(
        r"cannot be done|not available|not allowed|permission|access denied|disabled",
        "SUGGESTION: If the normal tool path is blocked, try a different workflow "
        "and, if needed, suggest a minimal in-repo implementation patch so the "
        "task can still be completed.",
    ),
)


class ToolFailureTracker:
    """Per-task circuit breaker with cooldown-based recovery."""

    def __init__(
        self,
        config: Optional[FailureTrackerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or FailureTrackerConfig()
        self._clock = clock or time.time
        self._failures: Dict[str, FailureRecord] = {}
        self._input_dependent_failures: Dict[str, FailureRecord] = {}
        self._disabled_tools: Dict[str, DisabledToolRecord] = {}

    def max_input_dependent_failures(self, tool_name: str) -> int:
        return self.config.input_dependent_overrides.get(
            tool_name, self.config.max_input_dependent_failures
        )

    def record_failure(self, tool_name: str, error_message: str) -> bool:
        """
        Record a tool failure.

        Returns:
            True if this failure disabled the tool
        """
        error_class = classify_error(error_message)

        if error_class == ErrorClass.NON_RETRYABLE:
            self._disable(tool_name, error_message)
            logger.warning(
                f"Tool {tool_name} disabled due to non-retryable error: "
                f"{truncate_for_log(error_message)}"
            )
            return True

        if error_class == ErrorClass.INPUT_DEPENDENT:
            record = self._input_dependent_failures.setdefault(
                tool_name, FailureRecord()
            )
            record.count += 1
            record.last_error = error_message
            threshold = self.max_input_dependent_failures(tool_name)

            logger.info(
                f"Input-dependent error for {tool_name} ({record.count}/{threshold}): "
                f"{truncate_for_log(error_message)}"
            )

            if record.count >= threshold:
                self._disable(
                    tool_name,
                    f"LLM failed to provide correct parameters {record.count} times: "
                    f"{error_message}",
                )
                logger.warning(
                    f"Tool {tool_name} disabled after {record.count} consecutive "
                    f"input-dependent failures"
                )
                return True
            return False

        record = self._failures.setdefault(tool_name, FailureRecord())
        record.count += 1
        record.last_error = error_message

        if record.count >= self.config.max_tool_failures:
            self._disable(tool_name, error_message)
            logger.warning(
                f"Tool {tool_name} disabled after {record.count} consecutive "
                f"systemic failures"
            )
            return True
        return False

    def record_success(self, tool_name: str) -> None:
        """Clear both failure counters. A disabled tool stays disabled."""
        self._failures.pop(tool_name, None)
        self._input_dependent_failures.pop(tool_name, None)

    def is_disabled(self, tool_name: str) -> bool:
        """Check if a tool is disabled, re-enabling it once the cooldown passes."""
        disabled = self._disabled_tools.get(tool_name)
        if disabled is None:
            return False

        if self._clock() - disabled.disabled_at >= self.config.cooldown_seconds:
            logger.info(
                f"Tool {tool_name} re-enabled after "
                f"{self.config.cooldown_seconds:g}s cooldown"
            )
            self._recover(tool_name)
            return False

        return True

    def get_state(self, tool_name: str) -> ToolHealth:
        if self.is_disabled(tool_name):
            return ToolHealth.DISABLED
        if tool_name in self._failures or tool_name in self._input_dependent_failures:
            return ToolHealth.DEGRADED
        return ToolHealth.HEALTHY

    def failure_counts(self, tool_name: str) -> Tuple[int, int]:
        """Return (systemic, input_dependent) failure counts."""
        systemic = self._failures.get(tool_name)
        input_dependent = self._input_dependent_failures.get(tool_name)
        return (
            systemic.count if systemic else 0,
            input_dependent.count if input_dependent else 0,
        )

    def get_last_error(self, tool_name: str) -> Optional[str]:
        """Last error for a tool, with remediation guidance when a rule applies."""
        disabled = self._disabled_tools.get(tool_name)
        base_error = None
        if disabled:
            base_error = disabled.reason
        elif tool_name in self._failures:
            base_error = self._failures[tool_name].last_error
        elif tool_name in self._input_dependent_failures:
            base_error = self._input_dependent_failures[tool_name].last_error

        if not base_error:
            return None

        guidance = self.get_guidance(tool_name, base_error)
        return f"{base_error}. {guidance}" if guidance else base_error

    @staticmethod
    def get_guidance(tool_name: str, error: str) -> Optional[str]:
        for rule in GUIDANCE_RULES:
            if rule.applies(tool_name, error):
                return rule.suggestion
        return None

    def get_disabled_tools(self) -> List[str]:
        """Names of tools still inside their cooldown; expired entries are dropped."""
        now = self._clock()
        active: List[str] = []
        for tool_name, info in list(self._disabled_tools.items()):
            if now - info.disabled_at < self.config.cooldown_seconds:
                active.append(tool_name)
            else:
                self._recover(tool_name)
        return active

    def _disable(self, tool_name: str, reason: str) -> None:
        self._disabled_tools[tool_name] = DisabledToolRecord(
            disabled_at=self._clock(), reason=reason
        )

    def _recover(self, tool_name: str) -> None:
        """Back to healthy: drop the disabled record and both failure counters."""
        self._disabled_tools.pop(tool_name, None)
        self._failures.pop(tool_name, None)
        self._input_dependent_failures.pop(tool_name, None)
