"""Compaction service: takes messages, returns compacted messages."""

from typing import TYPE_CHECKING

from loguru import logger

from aicoder.compaction.grouping import (
    extend_over_tool_results,
    flatten,
    group_messages,
    identify_rounds,
    replace_messages_with_summary,
)
from aicoder.compaction.summarizer import generate_summary
from aicoder.compaction.types import Message

if TYPE_CHECKING:
    from aicoder.providers.streaming_client import StreamingClient


class CompactionService:
    """
    Sliding-window compaction with AI summarization.

    The most recent `protect_rounds` groups are kept verbatim; everything
    older (except the system prompt and earlier summaries) is replaced by
    one summary message. Compaction is all-or-nothing: if the summary
    request fails the error propagates and no new list is produced.
    """

    def __init__(self, client: "StreamingClient", protect_rounds: int | None = None):
        """
        Initialize the compaction service.

        Args:
            client: API client used for summarization.
            protect_rounds: Recent groups never compacted. Defaults to the
                client's `context.compact_protect_rounds` setting.
        """
        self.client = client
        if protect_rounds is None:
            protect_rounds = client.config.context.compact_protect_rounds
        self.protect_rounds = max(0, protect_rounds)

    async def compact(self, messages: list[Message]) -> list[Message]:
        """
        Compact messages using sliding window + AI summarization.

        Args:
            messages: Full conversation, system prompt first.

        Returns:
            [system, *earlier summaries, new summary, *recent messages], or
            the input unchanged when there is nothing old enough.
        """
        if len(messages) <= 3:
            return messages

        system_message: Message | None = None
        other_summaries: list[Message] = []
        to_compact: list[Message] = []

        for i, msg in enumerate(messages):
            if i == 0 and msg.role == "system":
                system_message = msg
            elif msg.is_summary:
                other_summaries.append(msg)
            else:
                to_compact.append(msg)

        groups = group_messages(to_compact)
        split = max(0, len(groups) - self.protect_rounds)
        old_groups, recent_groups = groups[:split], groups[split:]

        if not old_groups:
            return messages

        old_messages = flatten(old_groups)
        logger.debug(
            f"Compacting {len(old_groups)} group(s) ({len(old_messages)} messages), "
            f"protecting {len(recent_groups)}"
        )

        try:
            summary = await generate_summary(old_messages, self.client)
        except Exception as e:
            logger.error(f"Compaction failed: {e}")
            raise

        head = [system_message] if system_message is not None else []
        return [*head, *other_summaries, Message.summary(summary), *flatten(recent_groups)]

    async def force_compact_rounds(self, messages: list[Message], n: int) -> list[Message]:
        """
        Force compact the N oldest conversation rounds.

        Args:
            messages: Full conversation.
            n: Number of rounds to summarize.

        Returns:
            Messages with the rounds' span replaced by one summary.
        """
        rounds = identify_rounds(messages)
        selected = rounds[:max(0, n)]
        if not selected:
            return messages

        to_compact = [msg for rnd in selected for msg in rnd.messages if not msg.is_summary]
        if not to_compact:
            return messages

        summary = await generate_summary(to_compact, self.client)
        return replace_messages_with_summary(messages, to_compact, Message.summary(summary))

    async def force_compact_messages(self, messages: list[Message], n: int) -> list[Message]:
        """
        Force compact the N oldest individual messages.

        Round and group boundaries are ignored, except that the selection is
        extended over tool results answering a selected assistant message.

        Args:
            messages: Full conversation.
            n: Number of messages to summarize.

        Returns:
            Messages with the selected span replaced by one summary.
        """
        eligible = [msg for msg in messages if msg.role != "system" and not msg.is_summary]
        if not eligible or n <= 0:
            return messages

        to_compact = extend_over_tool_results(eligible, eligible[:n])

        summary = await generate_summary(to_compact, self.client)
        return replace_messages_with_summary(messages, to_compact, Message.summary(summary))
