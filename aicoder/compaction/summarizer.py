"""AI summary generation for compaction."""

from typing import TYPE_CHECKING

from loguru import logger

from aicoder.compaction.types import (
    DEFAULT_SUMMARY_FALLBACK,
    MIN_SUMMARY_LENGTH,
    TOOL_RESULT_SUMMARY_CHARS,
    Message,
)
from aicoder.providers.base import collect_text

if TYPE_CHECKING:
    from aicoder.providers.streaming_client import StreamingClient


SUMMARIZE_SYSTEM_PROMPT = """You are a helpful AI assistant tasked with summarizing conversations.

When asked to summarize, provide a detailed but concise summary of the conversation.
Focus on information that would be helpful for continuing the conversation, including:

- What was done
- What is currently being worked on
- Which files are being modified
- What needs to be done next

Your summary should be comprehensive enough to provide context but concise enough to be quickly understood."""

SUMMARIZE_USER_PROMPT = """Based on the conversation below:

Numbered conversation to analyze:
{conversation}

---
Provide a detailed but concise summary of our conversation above. Focus on information that would be helpful for continuing the conversation, including what we did, what we're doing, which files we're working on, and what we're going to do next. Generate at least 1000 if you have enough information available to do so."""


def recency_tag(position: int, total: int) -> str:
    """Coarse recency label for a 1-based position in a transcript."""
    percent = position / total * 100
    if percent >= 80:
        return "🔴 VERY RECENT (Last 20%)"
    if percent >= 60:
        return "🟡 RECENT (Last 40%)"
    if percent >= 30:
        return "🟢 MIDDLE"
    return "🔵 OLD (First 30%)"


def format_message_for_summary(message: Message, position: int, total: int) -> str:
    prefix = f"[{position:>3}/{total}] {recency_tag(position, total)}"
    content = message.content or ""

    if message.role == "assistant":
        text = f"{prefix} Assistant: {content}"
        if message.tool_calls:
            calls = "\n".join(
                f"Tool Call: {tc.function_name or 'unknown'}({tc.function_arguments or '{}'})"
                for tc in message.tool_calls
            )
            text = f"{text}\n{calls}"
        return text

    if message.role == "tool":
        if len(content) > TOOL_RESULT_SUMMARY_CHARS:
            content = content[:TOOL_RESULT_SUMMARY_CHARS] + "... (truncated for summarization)"
        return f"{prefix} Tool Result (ID: {message.tool_call_id or 'unknown'}): {content}"

    return f"{prefix} {message.role.capitalize()}: {content}"


def format_messages_for_summary(messages: list[Message]) -> str:
    """
    Render messages as a numbered transcript with recency tags.

    Args:
        messages: Messages to render, oldest first.

    Returns:
        Transcript with entries separated by '---' lines.
    """
    total = len(messages)
    return "\n---\n".join(
        format_message_for_summary(msg, i, total) for i, msg in enumerate(messages, 1)
    )


def validate_summary(summary: str) -> bool:
    return len(summary) >= MIN_SUMMARY_LENGTH


async def generate_summary(messages: list[Message], client: "StreamingClient") -> str:
    """
    Summarize messages with one non-streaming request.

    Summary messages in the input are skipped. Errors from the client are
    propagated unchanged; a short summary is only logged.

    Args:
        messages: Messages to summarize.
        client: API client used for the request.

    Returns:
        Summary text, never empty.
    """
    to_summarize = [msg for msg in messages if not msg.is_summary]
    if not to_summarize:
        return "No previous content"

    request = [
        Message(role="system", content=SUMMARIZE_SYSTEM_PROMPT),
        Message(
            role="user",
            content=SUMMARIZE_USER_PROMPT.format(
                conversation=format_messages_for_summary(to_summarize)
            ),
        ),
    ]

    chunks = client.stream_request(request, stream=False, throw_on_error=True, include_tools=False)
    summary = (await collect_text(chunks)).strip()

    if not validate_summary(summary):
        logger.warning(
            f"Generated summary appears too short ({len(summary)} chars), using anyway"
        )

    return summary or DEFAULT_SUMMARY_FALLBACK
