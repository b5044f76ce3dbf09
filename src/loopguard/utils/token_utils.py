"""Token estimation and model context-limit resolution.

Token counts here are a deliberate approximation (about 4 UTF-8 bytes per
token). Budget thresholds are tuned against this estimate, so swapping in a
real tokenizer would change compaction behavior.
"""

import math
import re
from typing import Dict, Optional

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """
    Estimate token count from text.

    Args:
        text: Text to estimate; None or empty counts as zero

    Returns:
        ceil(utf8_length / 4)
    """
    if not text:
        return 0
    return math.ceil(len(text.encode("utf-8")) / CHARS_PER_TOKEN)


class TokenLimitManager:
    """Resolves a model identifier to its context window size."""

    # Conservative limits; underestimating is safer than overrunning
    STATIC_LIMITS: Dict[str, int] = {
        "opus-4-5": 200000,
        "sonnet-4-5": 200000,
        "haiku-4-5": 200000,
        "sonnet-4": 200000,
        "sonnet-3-5": 200000,
        "haiku-3-5": 200000,
        "gpt-4o": 128000,
        "gpt-4o-mini": 128000,
        "gpt-4.1": 128000,
        "gpt-4.1-mini": 128000,
        "gpt-4-turbo": 128000,
        "gpt-3.5-turbo": 16000,
    }

    DEFAULT_LIMIT = 100000

    # Anthropic family names all carry a 200K window
    _CLAUDE_FAMILY = ("sonnet", "opus", "haiku")
    _K_SUFFIX = re.compile(r"(^|[^0-9])(\d{1,3})k([^0-9]|$)")

    @classmethod
    def get_context_limit(cls, model: Optional[str] = None) -> int:
        """
        Get the context window for a model.

        Resolution order: exact table entry, family-name heuristic,
        an "<N>k" substring such as "llama-32k", then DEFAULT_LIMIT.
        """
        if model and model in cls.STATIC_LIMITS:
            return cls.STATIC_LIMITS[model]
        inferred = cls.infer_limit(model or "")
        return inferred if inferred is not None else cls.DEFAULT_LIMIT

    @classmethod
    def infer_limit(cls, model: str) -> Optional[int]:
        """Infer a limit from the model name, or None if nothing matches."""
        key = model.lower().strip()
        if not key:
            return None

        if key.startswith("claude-") or any(name in key for name in cls._CLAUDE_FAMILY):
            return 200000

        match = cls._K_SUFFIX.search(key)
        if match:
            thousands = int(match.group(2))
            if thousands > 0:
                return thousands * 1000

        return None
