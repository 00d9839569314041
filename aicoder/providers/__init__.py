"""Chat-completion provider module."""

from aicoder.providers.base import StreamChunk, ToolDefinitionProvider, collect_text
from aicoder.providers.streaming_client import StreamingClient, iter_sse_chunks

__all__ = ["StreamChunk", "ToolDefinitionProvider", "StreamingClient", "collect_text", "iter_sse_chunks"]
