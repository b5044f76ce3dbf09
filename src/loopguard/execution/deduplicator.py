"""Tool call deduplication and per-tool rate limiting.

Detects an agent stuck re-issuing the same call: exact repeats (same tool,
same canonicalized input), semantic repeats (same logical target with cosmetic
variations such as ``report_v2.docx`` vs ``report_final.docx``), and plain
over-use of a single tool within a minute.
"""

import hashlib
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loopguard.utils.logger import get_logger

logger = get_logger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60.0

# Observational tools whose result legitimately changes on every call
STATEFUL_TOOLS = frozenset(
    {
        "browser_get_content",
        "browser_screenshot",
        "browser_get_text",
        "browser_evaluate",
        "canvas_push",
    }
)

IDEMPOTENT_TOOLS = frozenset(
    {
        "read_file",
        "read_multiple_files",
        "list_directory",
        "directory_tree",
        "search_files",
        "search_code",
        "get_file_info",
        "canvas_list",
        "canvas_checkpoints",
        "task_history",
        "channel_list_chats",
        "channel_history",
        "web_search",
    }
)

READ_ONLY_PREFIXES = (
    "read_",
    "list_",
    "get_",
    "search_",
    "check_",
    "describe_",
    "query_",
)
READ_ONLY_SUFFIXES = ("_list", "_status", "_history")

_VERSION_SUFFIX = re.compile(r"[_-]v?\d+(\.\d+)?", re.IGNORECASE)
_REVISION_WORD = re.compile(
    r"[_-](complete|final|updated|new|copy|backup|draft)", re.IGNORECASE
)
_EXTENSION = re.compile(r"\.[^.]+$")
_SITE_MODIFIER = re.compile(
    r"site:(twitter\.com|x\.com|reddit\.com|github\.com)", re.IGNORECASE
)
_PLATFORM_WORD = re.compile(r"\b(reddit|twitter|x\.com|github)\b", re.IGNORECASE)


def _strip_filename_variants(name: str) -> str:
    name = _VERSION_SUFFIX.sub("", name)
    name = _REVISION_WORD.sub("", name)
    return _EXTENSION.sub("", name)


def _file_signature(tool_name: str, tool_input: Dict[str, Any]) -> str:
    filename = tool_input.get("filename") or tool_input.get("path") or ""
    return f"{tool_name}:file:{_strip_filename_variants(str(filename))}"


def _copy_signature(tool_name: str, tool_input: Dict[str, Any]) -> str:
    dest = (
        tool_input.get("destPath")
        or tool_input.get("dest_path")
        or tool_input.get("destination")
        or ""
    )
    return f"{tool_name}:copy:{_strip_filename_variants(str(dest))}"


def _search_signature(tool_name: str, tool_input: Dict[str, Any]) -> str:
    query = str(tool_input.get("query") or tool_input.get("search") or "").lower()
    query = _SITE_MODIFIER.sub("", query)
    query = _PLATFORM_WORD.sub("", query)
    query = re.sub(r"[\"']", "", query)
    query = re.sub(r"\s+", " ", query).strip()
    return f"{tool_name}:search:{query}"


SignatureFn = Callable[[str, Dict[str, Any]], str]

# Loop-prone tools and how each one's input reduces to a semantic signature
SEMANTIC_SIGNATURES: Dict[str, SignatureFn] = {
    "create_document": _file_signature,
    "write_file": _file_signature,
    "create_spreadsheet": _file_signature,
    "create_presentation": _file_signature,
    "copy_file": _copy_signature,
    "web_search": _search_signature,
}


def is_read_only_by_convention(tool_name: str) -> bool:
    """Check the read-only naming convention (``get_*``, ``*_status``, ...)."""
    return tool_name.startswith(READ_ONLY_PREFIXES) or tool_name.endswith(
        READ_ONLY_SUFFIXES
    )


@dataclass
class DeduplicatorConfig:
    """Thresholds for duplicate detection."""

    max_duplicates: int = 2
    window_seconds: float = 60.0
    max_semantic_similar: int = 4
    rate_limit: int = 20


@dataclass
class DuplicateCheck:
    """Advisory decision returned before a tool executes."""

    is_duplicate: bool
    reason: Optional[str] = None
    cached_result: Optional[str] = None


@dataclass
class ToolCallRecord:
    count: int
    last_call_time: float
    last_result: Optional[str] = None


@dataclass
class SemanticEntry:
    input: Dict[str, Any]
    time: float


@dataclass
class RateLimitCounter:
    count: int
    window_start: float


class ToolCallDeduplicator:
    """
    Per-task store of recent tool calls.

    Call ``check_duplicate`` before executing a tool and ``record_call`` after
    it actually runs. Recording is unconditional bookkeeping; enforcement is
    the caller's decision.
    """

    def __init__(
        self,
        config: Optional[DeduplicatorConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or DeduplicatorConfig()
        self._clock = clock or time.time
        self._recent_calls: Dict[str, ToolCallRecord] = {}
        self._semantic_patterns: Dict[str, List[SemanticEntry]] = {}
        self._rate_limits: Dict[str, RateLimitCounter] = {}

    @staticmethod
    def call_key(tool_name: str, tool_input: Any) -> str:
        """Hash the tool name with the key-sorted serialization of its input."""
        canonical = json.dumps(
            tool_input if tool_input is not None else {},
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )
        digest = hashlib.sha256(f"{tool_name}:{canonical}".encode("utf-8"))
        return f"{tool_name}:{digest.hexdigest()}"

    @staticmethod
    def semantic_signature(tool_name: str, tool_input: Any) -> str:
        """Reduce an input to its semantic signature (tool name by default)."""
        if not isinstance(tool_input, dict):
            return tool_name
        signature_fn = SEMANTIC_SIGNATURES.get(tool_name)
        if signature_fn is None:
            return tool_name
        return signature_fn(tool_name, tool_input)

    def check_duplicate(self, tool_name: str, tool_input: Any) -> DuplicateCheck:
        """
        Check whether a tool call should be blocked.

        Order: stateful allowlist, rate limit, exact duplicate, semantic
        duplicate. The first rule that fires decides.
        """
        if tool_name in STATEFUL_TOOLS:
            return DuplicateCheck(is_duplicate=False)

        now = self._clock()

        rate_reason = self._check_rate_limit(tool_name, now)
        if rate_reason:
            logger.info(rate_reason)
            return DuplicateCheck(is_duplicate=True, reason=rate_reason)

        self._prune_recent_calls(now)
        key = self.call_key(tool_name, tool_input)
        existing = self._recent_calls.get(key)
        if (
            existing
            and now - existing.last_call_time <= self.config.window_seconds
            and existing.count >= self.config.max_duplicates
        ):
            reason = (
                f'Tool "{tool_name}" called {existing.count + 1} times with identical '
                f"parameters within {self.config.window_seconds:g}s. "
                f"This appears to be a duplicate call."
            )
            logger.info(reason)
            return DuplicateCheck(
                is_duplicate=True, reason=reason, cached_result=existing.last_result
            )

        if tool_name in SEMANTIC_SIGNATURES and not is_read_only_by_convention(
            tool_name
        ):
            semantic_reason = self._check_semantic_duplicate(tool_name, tool_input, now)
            if semantic_reason:
                logger.info(semantic_reason)
                return DuplicateCheck(is_duplicate=True, reason=semantic_reason)

        return DuplicateCheck(is_duplicate=False)

    def record_call(
        self, tool_name: str, tool_input: Any, result: Optional[str] = None
    ) -> None:
        """Record a tool call that actually executed."""
        now = self._clock()

        key = self.call_key(tool_name, tool_input)
        existing = self._recent_calls.get(key)
        if existing and now - existing.last_call_time <= self.config.window_seconds:
            existing.count += 1
            existing.last_call_time = now
            if result is not None:
                existing.last_result = result
        else:
            self._recent_calls[key] = ToolCallRecord(
                count=1, last_call_time=now, last_result=result
            )

        signature = self.semantic_signature(tool_name, tool_input)
        patterns = self._recent_patterns(signature, now)
        patterns.append(SemanticEntry(input=tool_input, time=now))

        counter = self._rate_limits.get(tool_name)
        if counter is None or now - counter.window_start > RATE_LIMIT_WINDOW_SECONDS:
            self._rate_limits[tool_name] = RateLimitCounter(count=1, window_start=now)
        else:
            counter.count += 1

    def reset(self) -> None:
        """
        Clear exact and semantic history, e.g. when a new step begins.

        Rate-limit counters are kept: they bound a tool across the whole task.
        """
        self._recent_calls.clear()
        self._semantic_patterns.clear()

    def rate_limit_count(self, tool_name: str) -> int:
        counter = self._rate_limits.get(tool_name)
        if counter is None or self._clock() - counter.window_start > (
            RATE_LIMIT_WINDOW_SECONDS
        ):
            return 0
        return counter.count

    @staticmethod
    def is_idempotent_tool(tool_name: str) -> bool:
        """Check if a tool is safe to cache or skip on duplicates."""
        return tool_name in IDEMPOTENT_TOOLS or is_read_only_by_convention(tool_name)

    def _check_rate_limit(self, tool_name: str, now: float) -> Optional[str]:
        counter = self._rate_limits.get(tool_name)
        if counter is None or now - counter.window_start > RATE_LIMIT_WINDOW_SECONDS:
            return None

        if counter.count >= self.config.rate_limit:
            return (
                f'Rate limit exceeded: "{tool_name}" called {counter.count} times in '
                f"the last minute. Max allowed: {self.config.rate_limit}/min."
            )
        return None

    def _check_semantic_duplicate(
        self, tool_name: str, tool_input: Any, now: float
    ) -> Optional[str]:
        signature = self.semantic_signature(tool_name, tool_input)
        similar = len(self._recent_patterns(signature, now)) + 1

        if similar >= self.config.max_semantic_similar:
            return (
                f'Detected {similar} semantically similar "{tool_name}" calls within '
                f"{self.config.window_seconds:g}s. This appears to be a retry loop "
                f"with slight parameter variations. Please try a different approach "
                f"or check if the previous operation actually succeeded."
            )
        return None

    def _recent_patterns(self, signature: str, now: float) -> List[SemanticEntry]:
        recent = [
            entry
            for entry in self._semantic_patterns.get(signature, [])
            if now - entry.time <= self.config.window_seconds
        ]
        self._semantic_patterns[signature] = recent
        return recent

    def _prune_recent_calls(self, now: float) -> None:
        expired = [
            key
            for key, record in self._recent_calls.items()
            if now - record.last_call_time > self.config.window_seconds
        ]
        for key in expired:
            del self._recent_calls[key]
