"""Message history: the single owner of the live conversation."""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from aicoder.compaction import pruning
from aicoder.compaction.estimator import TokenEstimator, get_default_estimator
from aicoder.compaction.service import CompactionService
from aicoder.compaction.types import Message, PruneResult, ToolCall, ToolCallStats
from aicoder.config.schema import Config
from aicoder.stats import Stats

if TYPE_CHECKING:
    from aicoder.providers.streaming_client import StreamingClient

# Cap for the reported context size
MAX_REPORTED_TOKENS = 9_999_999

# Auto-compaction fires at this share of the configured threshold
AUTO_COMPACT_TRIGGER_RATIO = 0.8

CompactionOperation = Callable[[CompactionService, list[Message]], Awaitable[list[Message]]]


def _coerce_message(message: Message | dict[str, Any]) -> Message:
    return message if isinstance(message, Message) else Message.from_dict(message)


def _coerce_tool_call(call: ToolCall | dict[str, Any]) -> ToolCall:
    return call if isinstance(call, ToolCall) else ToolCall.from_dict(call)


class MessageHistory:
    """
    Ordered conversation log with token accounting and compaction.

    Mutators are synchronous and must be called from the event loop that
    runs compaction. Compaction runs single-flight: a trigger arriving
    while one is in progress is skipped. Messages added while the summary
    request is in flight are kept after the compacted prefix.
    """

    def __init__(
        self,
        stats: Stats | None = None,
        api_client: "StreamingClient | None" = None,
        config: Config | None = None,
        estimator: TokenEstimator | None = None,
    ):
        self.stats = stats or Stats()
        self.api_client = api_client
        if config is None:
            config = api_client.config if api_client is not None else Config()
        self.config = config
        self.estimator = estimator or get_default_estimator()

        self._messages: list[Message] = []
        self._initial_system_prompt: Message | None = None
        self._compaction_count = 0
        self._token_estimate = 0
        self._compaction_lock = asyncio.Lock()

    def set_api_client(self, api_client: "StreamingClient") -> None:
        """Set the API client used for compaction."""
        self.api_client = api_client

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def add_system_message(self, content: str) -> Message:
        message = Message(role="system", content=content)
        self._messages.append(message)
        if self._initial_system_prompt is None:
            self._initial_system_prompt = message
        self.estimate_context()
        return message

    def add_user_message(self, content: str) -> Message:
        message = Message(role="user", content=content)
        self._messages.append(message)
        self.stats.increment_messages_sent()
        self.estimate_context()
        return message

    def add_assistant_message(
        self,
        content: str | None = None,
        tool_calls: list[ToolCall | dict[str, Any]] | None = None,
    ) -> Message:
        """
        Add an assistant turn.

        Args:
            content: Text of the reply, if any.
            tool_calls: Requested tool calls as ToolCall objects or wire dicts.
        """
        calls = [_coerce_tool_call(tc) for tc in tool_calls] if tool_calls else None
        message = Message(role="assistant", content=content, tool_calls=calls)
        self._messages.append(message)
        self.estimate_context()
        return message

    def add_tool_results(self, results: list[dict[str, Any]]) -> list[Message]:
        """Append one tool message per `{"tool_call_id", "content"}` entry."""
        added = [
            Message(role="tool", content=r.get("content"), tool_call_id=r.get("tool_call_id"))
            for r in results
        ]
        self._messages.extend(added)
        self.estimate_context()
        return added

    def insert_user_message_after_last_appropriate_position(self, content: str) -> Message:
        """
        Insert a user message after the later of the last assistant message
        without tool calls and the last tool result.

        Falls back to appending when neither exists (position 0 when the
        history is empty).
        """
        last_assistant = -1
        last_tool = -1
        for i, msg in enumerate(self._messages):
            if msg.role == "assistant" and not msg.has_tool_calls:
                last_assistant = i
            elif msg.role == "tool":
                last_tool = i

        anchor = max(last_assistant, last_tool)
        position = anchor + 1 if anchor >= 0 else len(self._messages)

        message = Message(role="user", content=content)
        self._messages.insert(position, message)
        self.stats.increment_messages_sent()
        self.estimate_context()
        return message

    def set_messages(self, messages: list[Message | dict[str, Any]]) -> None:
        """Replace the whole sequence, e.g. when loading a session."""
        self.estimator.clear()
        self._replace([_coerce_message(m) for m in messages])

    def clear(self) -> None:
        self._messages = []
        self._initial_system_prompt = None
        self._compaction_count = 0
        self.estimator.clear()
        self.estimate_context()

    def _replace(self, messages: list[Message]) -> None:
        self._messages = list(messages)
        self.estimator.retain(self._messages)
        if self._messages and self._messages[0].role == "system":
            self._initial_system_prompt = self._messages[0]
        else:
            self._initial_system_prompt = None
        self.estimate_context()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_messages(self) -> list[Message]:
        """Return a copy of the sequence. Do not mutate the messages in it."""
        return list(self._messages)

    def get_chat_messages(self) -> list[Message]:
        """All messages except the initial system prompt."""
        if self._messages and self._messages[0] is self._initial_system_prompt:
            return self._messages[1:]
        return list(self._messages)

    def get_initial_system_prompt(self) -> Message | None:
        return self._initial_system_prompt

    def get_message_count(self) -> int:
        return len(self._messages)

    def get_chat_message_count(self) -> int:
        return len(self.get_chat_messages())

    def get_compaction_count(self) -> int:
        return self._compaction_count

    def get_round_count(self) -> int:
        """Count user-initiated rounds, ignoring system and summary messages."""
        rounds = 0
        in_user_turn = False
        for msg in self._messages:
            if msg.role == "system" or msg.is_summary:
                continue
            if msg.role == "user":
                if not in_user_turn:
                    rounds += 1
                    in_user_turn = True
            else:
                in_user_turn = False
        return rounds

    @property
    def token_estimate(self) -> int:
        """Estimate from the last estimate_context() call."""
        return self._token_estimate

    def estimate_context(self) -> int:
        """Recompute the token estimate and publish it to the stats."""
        estimate = min(self.estimator.estimate_messages_tokens(self._messages), MAX_REPORTED_TOKENS)
        self._token_estimate = estimate
        self.stats.set_current_prompt_size(estimate, estimated=True)
        return estimate

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def should_auto_compact(self) -> bool:
        """True once the estimate reaches 80% of the auto-compact threshold."""
        if not self.config.auto_compact_enabled:
            return False
        threshold = self.config.auto_compact_threshold
        return self.estimate_context() >= threshold * AUTO_COMPACT_TRIGGER_RATIO

    @property
    def is_compacting(self) -> bool:
        return self._compaction_lock.locked()

    async def compact_memory(self) -> bool:
        """
        Compact old history into a summary.

        Returns:
            True if a compaction was committed.

        Raises:
            Whatever the summary request raised. The sequence is left
            untouched in that case.
        """
        return await self._run_compaction(
            lambda service, messages: service.compact(messages),
            "Conversation compacted successfully",
        )

    async def force_compact_rounds(self, n: int) -> bool:
        """Summarize the N oldest rounds."""
        return await self._run_compaction(
            lambda service, messages: service.force_compact_rounds(messages, n),
            f"Force compacted {n} round(s)",
        )

    async def force_compact_messages(self, n: int) -> bool:
        """Summarize the N oldest messages."""
        return await self._run_compaction(
            lambda service, messages: service.force_compact_messages(messages, n),
            f"Force compacted {n} message(s)",
        )

    async def _run_compaction(self, operation: CompactionOperation, done_message: str) -> bool:
        if self.api_client is None:
            logger.warning("API client not available for compaction")
            return False

        if self._compaction_lock.locked():
            logger.info("Compaction already in progress, skipping")
            return False

        async with self._compaction_lock:
            snapshot = list(self._messages)
            service = CompactionService(
                self.api_client, self.config.context.compact_protect_rounds
            )
            compacted = await operation(service, snapshot)

            if compacted is snapshot:
                return False

            live = self._messages
            if [m.id for m in live[:len(snapshot)]] != [m.id for m in snapshot]:
                logger.warning("History changed during compaction; discarding result")
                return False

            self._replace([*compacted, *live[len(snapshot):]])
            self._compaction_count += 1
            self.stats.increment_compactions()
            logger.info(done_message)
            return True

    # ------------------------------------------------------------------
    # Tool-result pruning
    # ------------------------------------------------------------------

    def get_tool_result_messages(self) -> list[Message]:
        return pruning.tool_result_messages(self._messages)

    def get_tool_call_stats(self) -> ToolCallStats:
        return pruning.tool_call_stats(self._messages)

    def prune_all_tool_results(self) -> int:
        count = pruning.prune_all_tool_results(self._messages)
        self._after_prune(count)
        return count

    def prune_oldest_tool_results(self, count: int) -> int:
        pruned = pruning.prune_oldest_tool_results(self._messages, count)
        self._after_prune(pruned)
        return pruned

    def prune_tool_results_by_percentage(self, percentage: int | None = None) -> PruneResult:
        """
        Prune a share of the tool results over 256 bytes, oldest first.

        Args:
            percentage: Share to prune; defaults to `context.prune_percentage`.
        """
        if percentage is None:
            percentage = self.config.context.prune_percentage
        result = pruning.prune_tool_results_by_percentage(self._messages, percentage)
        self._after_prune(result.pruned_count)
        if result.pruned_count:
            logger.info(
                f"Pruned {result.pruned_count} tool result(s) ({percentage}%), "
                f"saved {result.saved_bytes:,} bytes, protected {result.protected_count}"
            )
        return result

    def _after_prune(self, pruned: int) -> None:
        if pruned:
            self.estimator.forget(self.get_tool_result_messages())
            self.estimate_context()
