"""Context budget management for the agent message history.

Keeps a conversation inside the model's context window before every model
request, escalating through two strategies:

1. Truncate oversized tool results in place.
2. Drop the oldest messages, always keeping the first message (the task)
   and any pinned message (durable memory or compaction summaries).

Compaction never raises. If pinned content alone is over budget the result
stays over budget and the metadata says so; what to do about that is the
caller's decision.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from loopguard.execution.messages import (
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from loopguard.utils.logger import get_logger
from loopguard.utils.token_utils import (
    CHARS_PER_TOKEN,
    TokenLimitManager,
    estimate_tokens,
)

logger = get_logger(__name__)

# Reserve for the response and provider-side framing
RESERVED_TOKENS = 8000

# Maximum tokens for a single tool result
MAX_TOOL_RESULT_TOKENS = 10000
MAX_TOOL_RESULT_CHARS = MAX_TOOL_RESULT_TOKENS * CHARS_PER_TOKEN

# Role/framing overhead added per message
MESSAGE_OVERHEAD_TOKENS = 10

# Array results keep at most this many leading items
MAX_JSON_ARRAY_ITEMS = 50

TRUNCATION_MARKER = "\n\n[... content truncated due to length ...]"

DEFAULT_PINNED_TAGS: Tuple[str, ...] = (
    "<memory_recall>",
    "<compaction_summary>",
    "<pinned_context>",
)


class CompactionKind(Enum):
    """Which strategy produced the compacted history."""

    NONE = "none"
    TOOL_TRUNCATION_ONLY = "tool_truncation_only"
    MESSAGE_REMOVAL = "message_removal"


@dataclass
class TruncationStats:
    did_truncate: bool = False
    count: int = 0
    tokens_after: int = 0


@dataclass
class RemovalStats:
    did_remove: bool = False
    count: int = 0
    tokens_after: int = 0
    messages: List[Message] = field(default_factory=list)


@dataclass
class CompactionMeta:
    """Metadata describing a compaction pass."""

    available_tokens: int
    original_tokens: int
    truncated_tool_results: TruncationStats = field(default_factory=TruncationStats)
    removed_messages: RemovalStats = field(default_factory=RemovalStats)
    kind: CompactionKind = CompactionKind.NONE

    @property
    def final_tokens(self) -> int:
        if self.kind == CompactionKind.MESSAGE_REMOVAL:
            return self.removed_messages.tokens_after
        if self.kind == CompactionKind.TOOL_TRUNCATION_ONLY:
            return self.truncated_tool_results.tokens_after
        return self.original_tokens

    @property
    def over_budget(self) -> bool:
        return self.final_tokens > self.available_tokens


@dataclass
class CompactionResult:
    messages: List[Message]
    meta: CompactionMeta


def estimate_message_tokens(message: Message) -> int:
    """Estimate tokens for a single message, including role overhead."""
    if isinstance(message.content, str):
        return estimate_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS

    tokens = MESSAGE_OVERHEAD_TOKENS
    for block in message.content:
        if isinstance(block, TextBlock):
            tokens += estimate_tokens(block.text)
        elif isinstance(block, ToolUseBlock):
            tokens += estimate_tokens(block.name) + estimate_tokens(
                _compact_json(block.input)
            )
        elif isinstance(block, ToolResultBlock):
            tokens += estimate_tokens(block.content)
    return tokens


def estimate_total_tokens(
    messages: Sequence[Message], system_prompt: Optional[str] = None
) -> int:
    """Estimate total tokens for a message list and optional system prompt."""
    total = estimate_tokens(system_prompt) if system_prompt else 0
    for message in messages:
        total += estimate_message_tokens(message)
    return total


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Truncate text to roughly ``max_tokens`` and append a visible marker.

    The kept prefix leaves room for the marker, so the result fits in
    ``max_tokens`` whenever the cap is larger than the marker itself.
    """
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text

    headroom = max(min(100, max_chars // 2), len(TRUNCATION_MARKER))
    return text[: max(0, max_chars - headroom)] + TRUNCATION_MARKER


def truncate_tool_result(result: str, max_chars: int = MAX_TOOL_RESULT_CHARS) -> str:
    """
    Shrink a tool result that exceeds ``max_chars``.

    JSON arrays keep their first 50 items with a "showing N of M" marker.
    JSON objects with a string ``content`` field have that field cut to half
    the per-result token cap. Anything else is truncated as plain text.
    The returned text is never longer than the input.
    """
    if len(result) <= max_chars:
        return result

    max_tokens = max_chars // CHARS_PER_TOKEN
    parsed = _safe_json_parse(result)

    if isinstance(parsed, list):
        limited = parsed[:MAX_JSON_ARRAY_ITEMS]
        truncated_json = json.dumps(limited, indent=2, ensure_ascii=False)
        if len(truncated_json) <= max_chars:
            candidate = (
                f"{truncated_json}\n\n"
                f"[... showing {len(limited)} of {len(parsed)} items ...]"
            )
            if len(candidate) < len(result):
                return candidate

    if isinstance(parsed, dict) and isinstance(parsed.get("content"), str):
        reduced = dict(parsed)
        reduced["content"] = truncate_to_tokens(parsed["content"], max_tokens // 2)
        candidate = json.dumps(reduced, indent=2, ensure_ascii=False)
        if len(candidate) < len(result):
            return candidate

    candidate = truncate_to_tokens(result, max_tokens)
    return candidate if len(candidate) < len(result) else result


class ContextBudgetManager:
    """
    Fits a message history into a model's context window.

    Args:
        model: Model identifier used to resolve the context limit
        reserved_tokens: Tokens held back for the response
        max_tool_result_chars: Per-result cap applied by strategy 1
        pinned_tags: Prefixes that mark a message as pinned
    """

    def __init__(
        self,
        model: str = "default",
        reserved_tokens: int = RESERVED_TOKENS,
        max_tool_result_chars: int = MAX_TOOL_RESULT_CHARS,
        pinned_tags: Sequence[str] = DEFAULT_PINNED_TAGS,
    ):
        self.model = model
        self.model_limit = TokenLimitManager.get_context_limit(model)
        self.reserved_tokens = reserved_tokens
        self.max_tool_result_chars = max_tool_result_chars
        self.pinned_tags = tuple(pinned_tags)

    def get_available_tokens(self, system_prompt_tokens: int = 0) -> int:
        """Tokens available for messages after the reserve and system prompt."""
        return self.model_limit - self.reserved_tokens - system_prompt_tokens

    def is_pinned(self, message: Message) -> bool:
        leading = message.leading_text().lstrip()
        return any(leading.startswith(tag) for tag in self.pinned_tags)

    def compact(
        self, messages: Sequence[Message], system_prompt_tokens: int = 0
    ) -> CompactionResult:
        """
        Compact messages to fit the available budget.

        Args:
            messages: Conversation history, oldest first
            system_prompt_tokens: Estimated size of the system prompt

        Returns:
            CompactionResult with the (possibly) shortened history. With
            kind NONE the messages are the input unchanged.
        """
        messages = list(messages)
        available = self.get_available_tokens(system_prompt_tokens)
        original_tokens = estimate_total_tokens(messages)

        if original_tokens <= available:
            return CompactionResult(
                messages=messages,
                meta=CompactionMeta(
                    available_tokens=available, original_tokens=original_tokens
                ),
            )

        logger.info(
            f"Context too large ({original_tokens} tokens, {available} available), "
            f"compacting {len(messages)} messages"
        )

        # Strategy 1: truncate large tool results
        truncated, truncated_count = self._truncate_large_results(messages)
        truncated_tokens = estimate_total_tokens(truncated)
        truncation = TruncationStats(
            did_truncate=truncated_count > 0,
            count=truncated_count,
            tokens_after=truncated_tokens,
        )

        if truncated_tokens <= available or len(truncated) < 3:
            if truncated_tokens > available:
                logger.warning(
                    f"Context still over budget after truncation "
                    f"({truncated_tokens}/{available} tokens); too few messages to remove"
                )
            else:
                logger.info(
                    f"After truncating {truncated_count} tool results: "
                    f"{truncated_tokens} tokens"
                )
            return CompactionResult(
                messages=truncated,
                meta=CompactionMeta(
                    available_tokens=available,
                    original_tokens=original_tokens,
                    truncated_tool_results=truncation,
                    kind=CompactionKind.TOOL_TRUNCATION_ONLY,
                ),
            )

        # Strategy 2: remove older messages, keeping the first and pinned ones
        kept, removed = self._remove_older_messages(truncated, available)
        final_tokens = estimate_total_tokens(kept)

        logger.info(
            f"After compaction: {final_tokens} tokens, {len(kept)} messages "
            f"({len(removed)} removed)"
        )
        if final_tokens > available:
            logger.warning(
                f"Pinned context alone exceeds budget ({final_tokens}/{available} tokens)"
            )

        return CompactionResult(
            messages=kept,
            meta=CompactionMeta(
                available_tokens=available,
                original_tokens=original_tokens,
                truncated_tool_results=truncation,
                removed_messages=RemovalStats(
                    did_remove=bool(removed),
                    count=len(removed),
                    tokens_after=final_tokens,
                    messages=removed,
                ),
                kind=CompactionKind.MESSAGE_REMOVAL,
            ),
        )

    def would_exceed_limit(
        self,
        current_messages: Sequence[Message],
        new_message: Message,
        system_prompt_tokens: int = 0,
    ) -> bool:
        """Check if appending ``new_message`` would exceed the budget."""
        total = estimate_total_tokens(current_messages) + estimate_message_tokens(
            new_message
        )
        return total > self.get_available_tokens(system_prompt_tokens)

    def _truncate_large_results(
        self, messages: List[Message]
    ) -> Tuple[List[Message], int]:
        result: List[Message] = []
        count = 0
        for message in messages:
            if not message.has_tool_results():
                result.append(message)
                continue

            new_blocks = []
            changed = False
            for block in message.blocks:
                if isinstance(block, ToolResultBlock):
                    shortened = truncate_tool_result(
                        block.content, self.max_tool_result_chars
                    )
                    if shortened != block.content:
                        block = ToolResultBlock(
                            tool_use_id=block.tool_use_id,
                            content=shortened,
                            is_error=block.is_error,
                        )
                        changed = True
                        count += 1
                new_blocks.append(block)

            result.append(
                Message(role=message.role, content=tuple(new_blocks))
                if changed
                else message
            )
        return result, count

    def _remove_older_messages(
        self, messages: List[Message], target_tokens: int
    ) -> Tuple[List[Message], List[Message]]:
        """Walk newest to oldest, keeping messages until the first overflow."""
        pinned = {i for i in range(1, len(messages)) if self.is_pinned(messages[i])}
        keep = {0} | pinned
        running = estimate_message_tokens(messages[0]) + sum(
            estimate_message_tokens(messages[i]) for i in pinned
        )

        for i in range(len(messages) - 1, 0, -1):
            if i in pinned:
                continue
            cost = estimate_message_tokens(messages[i])
            if running + cost > target_tokens:
                break
            keep.add(i)
            running += cost

        kept = [m for i, m in enumerate(messages) if i in keep]
        removed = [m for i, m in enumerate(messages) if i not in keep]
        return kept, removed


def _compact_json(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _safe_json_parse(text: str) -> Any:
    # Deeply nested arrays exhaust the decoder stack with RecursionError
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None
