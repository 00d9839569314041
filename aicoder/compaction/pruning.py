"""Tool-result pruning: fast, non-AI context relief."""

from aicoder.compaction.estimator import estimate_tokens
from aicoder.compaction.types import (
    PRUNE_PROTECTION_THRESHOLD,
    PRUNED_TOOL_MESSAGE,
    Message,
    PruneResult,
    ToolCallStats,
)

_PRUNED_BYTES = len(PRUNED_TOOL_MESSAGE.encode("utf-8"))


def content_bytes(message: Message) -> int:
    return len((message.content or "").encode("utf-8"))


def tool_result_messages(messages: list[Message]) -> list[Message]:
    return [msg for msg in messages if msg.role == "tool"]


def tool_call_stats(messages: list[Message]) -> ToolCallStats:
    """Count, estimated tokens and bytes of all tool results."""
    stats = ToolCallStats()
    for msg in tool_result_messages(messages):
        stats.count += 1
        stats.tokens += estimate_tokens(msg.content or "")
        stats.bytes += content_bytes(msg)
    return stats


def _is_prunable(message: Message) -> bool:
    return message.content != PRUNED_TOOL_MESSAGE and content_bytes(message) > _PRUNED_BYTES


def _prune(message: Message) -> int:
    """Replace content with the prune marker, returning bytes saved."""
    saved = content_bytes(message) - _PRUNED_BYTES
    message.content = PRUNED_TOOL_MESSAGE
    return saved


def prune_all_tool_results(messages: list[Message]) -> int:
    """Prune every tool result larger than the marker. Returns the count pruned."""
    pruned = 0
    for msg in tool_result_messages(messages):
        if _is_prunable(msg):
            _prune(msg)
            pruned += 1
    return pruned


def prune_oldest_tool_results(messages: list[Message], count: int) -> int:
    """Prune up to `count` of the oldest prunable tool results."""
    pruned = 0
    for msg in tool_result_messages(messages):
        if pruned >= count:
            break
        if _is_prunable(msg):
            _prune(msg)
            pruned += 1
    return pruned


def prune_tool_results_by_percentage(messages: list[Message], percentage: int) -> PruneResult:
    """
    Prune a percentage of the large tool results, oldest first.

    Results of PRUNE_PROTECTION_THRESHOLD bytes or less are never touched
    and are reported as protected. At least one large result is pruned
    whenever any exist and the percentage is positive.

    Args:
        messages: Conversation to prune in place.
        percentage: Share of large tool results to prune (0-100).

    Returns:
        PruneResult with pruned count, bytes saved and protected count.
    """
    result = PruneResult()
    large: list[Message] = []

    for msg in tool_result_messages(messages):
        if content_bytes(msg) > PRUNE_PROTECTION_THRESHOLD:
            large.append(msg)
        else:
            result.protected_count += 1

    if not large or percentage <= 0:
        return result

    to_prune = max(1, len(large) * min(percentage, 100) // 100)
    for msg in large[:to_prune]:
        result.saved_bytes += _prune(msg)
        result.pruned_count += 1

    return result
