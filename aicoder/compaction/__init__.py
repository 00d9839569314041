"""Compaction system for context management.

The AI-backed pieces (`aicoder.compaction.service`,
`aicoder.compaction.summarizer`) depend on the provider package and are
imported from their modules directly.
"""

from aicoder.compaction.estimator import (
    TokenEstimator,
    clear_token_cache,
    estimate_messages_tokens,
    estimate_tokens,
    set_tool_definitions_tokens,
)
from aicoder.compaction.grouping import group_messages, identify_rounds
from aicoder.compaction.pruning import (
    prune_all_tool_results,
    prune_oldest_tool_results,
    prune_tool_results_by_percentage,
    tool_call_stats,
)
from aicoder.compaction.types import (
    PRUNED_TOOL_MESSAGE,
    SUMMARY_PREFIX,
    Message,
    MessageGroup,
    MessageKind,
    PruneResult,
    Round,
    ToolCall,
    ToolCallStats,
)

__all__ = [
    # Estimator
    "TokenEstimator",
    "estimate_tokens",
    "estimate_messages_tokens",
    "set_tool_definitions_tokens",
    "clear_token_cache",
    # Grouping
    "group_messages",
    "identify_rounds",
    # Pruning
    "prune_all_tool_results",
    "prune_oldest_tool_results",
    "prune_tool_results_by_percentage",
    "tool_call_stats",
    # Types
    "Message",
    "MessageGroup",
    "MessageKind",
    "PruneResult",
    "Round",
    "ToolCall",
    "ToolCallStats",
    "PRUNED_TOOL_MESSAGE",
    "SUMMARY_PREFIX",
]
