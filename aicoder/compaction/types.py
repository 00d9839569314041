"""Types for the conversation model and compaction system."""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]

# Wire/disk marker for summary messages, kept for compatibility with saved sessions
SUMMARY_PREFIX = "[SUMMARY] "

DEFAULT_SUMMARY_FALLBACK = "Conversation summarized"
MIN_SUMMARY_LENGTH = 50
TOOL_RESULT_SUMMARY_CHARS = 500

# Tool results at or below this many bytes are never pruned
PRUNE_PROTECTION_THRESHOLD = 256
PRUNED_TOOL_MESSAGE = "[Tool result pruned to save context space]"

_message_ids = itertools.count(1)


class MessageKind(str, Enum):
    NORMAL = "normal"
    SUMMARY = "summary"


@dataclass
class ToolCall:
    """A function call requested by the assistant."""

    id: str
    function_name: str
    function_arguments: str = "{}"
    index: int | None = None  # Position in the streamed tool_calls deltas
    type: str = "function"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        func = data.get("function") or {}
        return cls(
            id=data.get("id", ""),
            function_name=func.get("name") or "",
            function_arguments=func.get("arguments") or "{}",
            index=data.get("index"),
            type=data.get("type") or "function",
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function_name,
                "arguments": self.function_arguments,
            },
        }
        if self.index is not None:
            data["index"] = self.index
        return data


@dataclass
class Message:
    """
    A single conversation turn.

    `id` is unique per process and stable for the lifetime of the object;
    token caching and splicing key on it. It takes no part in equality.
    """

    role: Role
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    kind: MessageKind = MessageKind.NORMAL
    id: int = field(default_factory=lambda: next(_message_ids), compare=False, repr=False)

    @classmethod
    def summary(cls, text: str) -> "Message":
        """Build a summary message (user role to avoid model issues)."""
        return cls(role="user", content=f"{SUMMARY_PREFIX}{text}", kind=MessageKind.SUMMARY)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content")
        raw_calls = data.get("tool_calls")
        is_summary = isinstance(content, str) and content.startswith(SUMMARY_PREFIX.rstrip())
        return cls(
            role=data.get("role", "user"),
            content=content,
            tool_calls=[ToolCall.from_dict(tc) for tc in raw_calls] if raw_calls else None,
            tool_call_id=data.get("tool_call_id"),
            kind=MessageKind.SUMMARY if is_summary else MessageKind.NORMAL,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire form: role and content, plus tool fields only when present."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @property
    def is_summary(self) -> bool:
        return self.kind is MessageKind.SUMMARY

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class MessageGroup:
    """An atomic compaction unit; a tool call and its result never split."""

    messages: list[Message]
    is_summary: bool = False
    is_user_turn: bool = False


@dataclass
class Round:
    """One user message and everything up to the next user message."""

    messages: list[Message]


@dataclass
class PruneResult:
    """Outcome of pruning tool results by percentage."""

    pruned_count: int = 0
    saved_bytes: int = 0
    protected_count: int = 0


@dataclass
class ToolCallStats:
    """Size of the tool results currently held in history."""

    count: int = 0
    tokens: int = 0
    bytes: int = 0
