"""Conversation message model consumed by the context budget manager."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

VALID_ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class TextBlock:
    """Plain text span."""

    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool call requested by the model."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    """The result of a tool call fed back to the model."""

    tool_use_id: str
    content: str
    is_error: Optional[bool] = None
    type: str = field(default="tool_result", init=False)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class Message:
    """
    Immutable conversation message.

    ``content`` is either plain text or an ordered tuple of content blocks.
    Compaction builds new messages instead of mutating existing ones.
    """

    role: str
    content: Union[str, Tuple[ContentBlock, ...]]

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {self.role}. Must be one of {VALID_ROLES}")
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def blocks(self) -> Tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return ()
        return self.content

    def leading_text(self) -> str:
        """Text the message starts with (first text block for block content)."""
        if isinstance(self.content, str):
            return self.content
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
            return ""
        return ""

    def has_tool_results(self) -> bool:
        return any(isinstance(block, ToolResultBlock) for block in self.blocks)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from its JSON form (Anthropic-style block dicts)."""
        content = data.get("content", "")
        if isinstance(content, str):
            return cls(role=data["role"], content=content)

        blocks: List[ContentBlock] = []
        for raw in content:
            block_type = raw.get("type")
            if block_type == "text":
                blocks.append(TextBlock(text=raw.get("text", "")))
            elif block_type == "tool_use":
                blocks.append(
                    ToolUseBlock(
                        id=raw.get("id", ""),
                        name=raw.get("name", ""),
                        input=raw.get("input") or {},
                    )
                )
            elif block_type == "tool_result":
                blocks.append(
                    ToolResultBlock(
                        tool_use_id=raw.get("tool_use_id", ""),
                        content=_stringify_result(raw.get("content", "")),
                        is_error=raw.get("is_error"),
                    )
                )
            else:
                raise ValueError(f"Unknown content block type: {block_type}")
        return cls(role=data["role"], content=tuple(blocks))

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}

        blocks: List[Dict[str, Any]] = []
        for block in self.content:
            if isinstance(block, TextBlock):
                blocks.append({"type": "text", "text": block.text})
            elif isinstance(block, ToolUseBlock):
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": block.input,
                    }
                )
            else:
                entry: Dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": block.tool_use_id,
                    "content": block.content,
                }
                if block.is_error:
                    entry["is_error"] = True
                blocks.append(entry)
        return {"role": self.role, "content": blocks}


def _stringify_result(content: Any) -> str:
    # Tool results may arrive as a list of text blocks
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item.get("text", "") if isinstance(item, dict) else str(item)
            for item in content
        )
    return str(content)
