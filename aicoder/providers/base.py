"""Shared types for chat-completion providers."""

from typing import Any, AsyncIterator, Protocol

from aicoder.errors import (
    MAX_REQUEST_BYTES,
    AllAttemptsFailed,
    ConfigurationError,
    HttpError,
    RequestTooLarge,
    TransientError,
    TransportError,
)

# A decoded chunk: {"choices": [{"delta": {...}, "finish_reason": ...}], "usage": {...}}
StreamChunk = dict[str, Any]

__all__ = [
    "MAX_REQUEST_BYTES",
    "AllAttemptsFailed",
    "ConfigurationError",
    "HttpError",
    "RequestTooLarge",
    "StreamChunk",
    "ToolDefinitionProvider",
    "TransientError",
    "TransportError",
    "chunk_content",
    "chunk_delta",
    "collect_text",
    "synthetic_chunk",
]


class ToolDefinitionProvider(Protocol):
    """Anything that can list OpenAI-style function tool schemas."""

    def get_definitions(self) -> list[dict[str, Any]]:
        ...


def chunk_delta(chunk: StreamChunk) -> dict[str, Any]:
    """Return the first choice's delta, or an empty dict."""
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return {}
    return choices[0].get("delta") or {}


def chunk_content(chunk: StreamChunk) -> str:
    """Return the text content carried by a chunk, or ''."""
    content = chunk_delta(chunk).get("content")
    return content if isinstance(content, str) else ""


def synthetic_chunk(data: dict[str, Any]) -> StreamChunk | None:
    """
    Reshape a non-streaming completion into the streaming chunk shape.

    Returns None when the reply carries no message.
    """
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    choice = choices[0]
    message = choice.get("message")
    if not isinstance(message, dict):
        return None

    delta: dict[str, Any] = {"content": message.get("content")}
    if message.get("tool_calls"):
        delta["tool_calls"] = message["tool_calls"]

    chunk: StreamChunk = {
        "choices": [{"delta": delta, "finish_reason": choice.get("finish_reason")}],
    }
    if data.get("usage"):
        chunk["usage"] = data["usage"]
    return chunk


async def collect_text(chunks: AsyncIterator[StreamChunk]) -> str:
    """Concatenate the text content of every chunk."""
    parts: list[str] = []
    async for chunk in chunks:
        content = chunk_content(chunk)
        if content:
            parts.append(content)
    return "".join(parts)
