"""Error classification for tool failures.

Maps a raw tool error message to one of three classes that drive the
circuit breaker in ``failure_tracker``:

- NON_RETRYABLE: quota, billing or rate-limit exhaustion. Disable at once.
- INPUT_DEPENDENT: the specific arguments were wrong (missing file, bad
  parameter, timeout on a slow query, site-specific navigation failure).
  A different input is expected to succeed, so more failures are tolerated.
- SYSTEMIC: anything else. The tool itself is assumed to be broken.

Rules are plain data evaluated top to bottom; the first match wins, and all
non-retryable rules come before any input-dependent rule.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Pattern, Tuple


class ErrorClass(Enum):
    """Classification of tool errors for circuit breaker handling."""

    NON_RETRYABLE = "non_retryable"
    INPUT_DEPENDENT = "input_dependent"
    SYSTEMIC = "systemic"


@dataclass(frozen=True)
class ErrorRule:
    """A single ordered classification rule."""

    pattern: Pattern[str]
    error_class: ErrorClass
    description: str = ""

    def matches(self, error_message: str) -> bool:
        return bool(self.pattern.search(error_message))


def _rule(pattern: str, error_class: ErrorClass, description: str = "") -> ErrorRule:
    return ErrorRule(re.compile(pattern, re.IGNORECASE), error_class, description)


NON_RETRYABLE_RULES: Tuple[ErrorRule, ...] = (
    _rule(r"quota.*exceeded", ErrorClass.NON_RETRYABLE, "quota exceeded"),
    _rule(r"exceeds?.*usage.*limit", ErrorClass.NON_RETRYABLE, "usage limit"),
    _rule(r"usage.*limit", ErrorClass.NON_RETRYABLE, "usage limit"),
    _rule(r"rate.*limit", ErrorClass.NON_RETRYABLE, "rate limit"),
    _rule(r"exceeded.*quota", ErrorClass.NON_RETRYABLE, "quota exceeded"),
    _rule(r"too many requests", ErrorClass.NON_RETRYABLE, "HTTP 429 text"),
    _rule(r"429", ErrorClass.NON_RETRYABLE, "HTTP 429"),
    _rule(r"432", ErrorClass.NON_RETRYABLE, "HTTP 432"),
    _rule(r"resource.*exhausted", ErrorClass.NON_RETRYABLE, "resource exhausted"),
    _rule(r"billing", ErrorClass.NON_RETRYABLE, "billing"),
    _rule(r"payment.*required", ErrorClass.NON_RETRYABLE, "payment required"),
    _rule(r"upgrade your plan", ErrorClass.NON_RETRYABLE, "plan upgrade"),
)

INPUT_DEPENDENT_RULES: Tuple[ErrorRule, ...] = (
    _rule(r"ENOENT", ErrorClass.INPUT_DEPENDENT, "file or directory not found"),
    _rule(r"ENOTDIR", ErrorClass.INPUT_DEPENDENT, "not a directory"),
    _rule(r"EISDIR", ErrorClass.INPUT_DEPENDENT, "is a directory"),
    _rule(r"no such file", ErrorClass.INPUT_DEPENDENT, "file not found"),
    _rule(r"not found", ErrorClass.INPUT_DEPENDENT, "generic not found"),
    _rule(r"does not exist", ErrorClass.INPUT_DEPENDENT, "resource missing"),
    _rule(r"invalid path", ErrorClass.INPUT_DEPENDENT, "invalid path"),
    _rule(r"path.*invalid", ErrorClass.INPUT_DEPENDENT, "invalid path"),
    _rule(r"cannot find", ErrorClass.INPUT_DEPENDENT, "cannot find resource"),
    _rule(r"permission denied", ErrorClass.INPUT_DEPENDENT, "file permission"),
    _rule(r"EACCES", ErrorClass.INPUT_DEPENDENT, "file access denied"),
    _rule(r"parameter.*required", ErrorClass.INPUT_DEPENDENT, "missing parameter"),
    _rule(r"required.*not provided", ErrorClass.INPUT_DEPENDENT, "missing parameter"),
    _rule(r"invalid.*parameter", ErrorClass.INPUT_DEPENDENT, "invalid parameter"),
    _rule(r"must be.*string", ErrorClass.INPUT_DEPENDENT, "type validation"),
    _rule(r"expected.*but received", ErrorClass.INPUT_DEPENDENT, "type validation"),
    _rule(r"timed out", ErrorClass.INPUT_DEPENDENT, "operation timed out"),
    _rule(r"net::ERR_", ErrorClass.INPUT_DEPENDENT, "browser navigation error"),
    _rule(r"ERR_HTTP2_PROTOCOL_ERROR", ErrorClass.INPUT_DEPENDENT, "site HTTP/2 error"),
    _rule(r"syntax error", ErrorClass.INPUT_DEPENDENT, "script syntax error"),
    _rule(
        r"applescript execution failed",
        ErrorClass.INPUT_DEPENDENT,
        "AppleScript failure",
    ),
    _rule(r"user denied", ErrorClass.INPUT_DEPENDENT, "approval denied"),
)

ERROR_RULES: Tuple[ErrorRule, ...] = NON_RETRYABLE_RULES + INPUT_DEPENDENT_RULES


def classify_error(error_message: str) -> ErrorClass:
    """
    Classify a tool error message.

    Args:
        error_message: The error message from tool execution

    Returns:
        The class of the first matching rule, or SYSTEMIC if none match
    """
    if not error_message:
        return ErrorClass.SYSTEMIC

    for rule in ERROR_RULES:
        if rule.matches(error_message):
            return rule.error_class
    return ErrorClass.SYSTEMIC


def matching_rules(error_message: str) -> List[ErrorRule]:
    """Return every rule that matches, in evaluation order."""
    return [rule for rule in ERROR_RULES if rule.matches(error_message or "")]


def is_non_retryable_error(error_message: str) -> bool:
    """Check if an error indicates quota, billing or rate-limit exhaustion."""
    return classify_error(error_message) == ErrorClass.NON_RETRYABLE


def is_input_dependent_error(error_message: str) -> bool:
    """Check if an error was caused by the specific arguments given."""
    return classify_error(error_message) == ErrorClass.INPUT_DEPENDENT
