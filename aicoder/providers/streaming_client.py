"""Streaming chat-completion client over plain HTTP + Server-Sent Events."""

import asyncio
import codecs
import json
import time
from contextlib import aclosing
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from aicoder import __version__
from aicoder.compaction.estimator import (
    TokenEstimator,
    estimate_tool_definitions_tokens,
    get_default_estimator,
)
from aicoder.compaction.types import Message
from aicoder.config.schema import Config
from aicoder.errors import (
    MAX_REQUEST_BYTES,
    AllAttemptsFailed,
    HttpError,
    RequestTooLarge,
    TransientError,
    TransportError,
)
from aicoder.providers.base import StreamChunk, ToolDefinitionProvider, synthetic_chunk
from aicoder.stats import Stats

_STREAMING_CONTENT_TYPES = ("text/event-stream", "text/plain")


def _parse_sse_line(line: str) -> tuple[bool, StreamChunk | None]:
    """
    Parse one SSE line.

    Returns (done, chunk). Blank lines, non-data lines and malformed
    payloads give (False, None).
    """
    line = line.rstrip("\r")
    if not line.strip() or not line.startswith("data: "):
        return False, None

    data = line[6:]
    if data == "[DONE]":
        return True, None

    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"SSE parse error: {e}; raw data: {data[:200]}")
        return False, None

    if not isinstance(chunk, dict):
        logger.warning(f"SSE payload is not an object: {data[:200]}")
        return False, None
    return False, chunk


async def iter_sse_chunks(byte_stream: AsyncIterator[bytes]) -> AsyncIterator[StreamChunk]:
    """
    Decode an SSE byte stream into chunks, stopping at `data: [DONE]`.

    Bytes are decoded incrementally so multi-byte characters split across
    network reads survive. The last, possibly partial, line is carried over
    to the next read.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for raw in byte_stream:
        buffer += decoder.decode(raw)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            done, chunk = _parse_sse_line(line)
            if done:
                return
            if chunk is not None:
                yield chunk

    buffer += decoder.decode(b"", final=True)
    if buffer:
        done, chunk = _parse_sse_line(buffer)
        if chunk is not None and not done:
            yield chunk


class StreamingClient:
    """
    Chat-completion client with bounded retry.

    Every call to `stream_request` is one logical exchange that yields
    chunks shaped `{"choices": [{"delta", "finish_reason"}], "usage"?}`,
    whether the server streamed or answered with a single JSON body.
    """

    def __init__(
        self,
        config: Config,
        stats: Stats | None = None,
        tool_provider: ToolDefinitionProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        estimator: TokenEstimator | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Endpoint, model, timeout and retry settings.
            stats: Counters to update; a private instance is used if omitted.
            tool_provider: Source of tool definitions sent with each request.
            http_client: Optional shared client. Injected clients are not closed.
            estimator: Where the tool-definition token count is recorded.
        """
        self.config = config
        self.stats = stats or Stats()
        self.tool_provider = tool_provider
        self.estimator = estimator or get_default_estimator()
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
            self._owns_http = True
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _timeout(self) -> httpx.Timeout:
        timeouts = self.config.timeouts
        return httpx.Timeout(timeouts.total, connect=timeouts.connect, read=timeouts.read)

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"aicoder/{__version__}",
        }
        if self.config.api.api_key:
            headers["Authorization"] = f"Bearer {self.config.api.api_key}"
        return headers

    def _redact(self, text: str) -> str:
        api_key = self.config.api.api_key
        if api_key and len(api_key) > 8:
            return text.replace(api_key, "***")
        return text

    def prepare_request_data(
        self,
        messages: list[Message],
        stream: bool = True,
        include_tools: bool = True,
    ) -> dict[str, Any]:
        """Build the JSON request body."""
        api = self.config.api
        data: dict[str, Any] = {
            "model": api.model,
            "messages": [msg.to_dict() for msg in messages],
            "stream": stream,
        }

        if api.temperature is not None:
            data["temperature"] = api.temperature
        if api.max_tokens:
            data["max_tokens"] = api.max_tokens

        if include_tools and self.tool_provider is not None:
            definitions = self.tool_provider.get_definitions()
            if definitions:
                data["tools"] = definitions
                data["tool_choice"] = "auto"
                self.estimator.set_tool_definitions_tokens(
                    estimate_tool_definitions_tokens(definitions)
                )
                logger.debug(f"Tool definitions count: {len(definitions)}")

        return data

    def encode_request(self, data: dict[str, Any]) -> bytes:
        """Serialize a request body, rejecting it if it is over the size limit."""
        body = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        if len(body) > MAX_REQUEST_BYTES:
            raise RequestTooLarge(len(body), MAX_REQUEST_BYTES)
        return body

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after a failed attempt: min(2^attempt, max_wait)."""
        max_wait = self.config.retry.max_wait
        if max_wait <= 0:
            return 0.0
        return min(2.0 ** attempt, max_wait)

    async def stream_request(
        self,
        messages: list[Message],
        stream: bool = True,
        throw_on_error: bool = False,
        include_tools: bool = True,
    ) -> AsyncIterator[StreamChunk]:
        """
        Make an API request, streaming or not.

        Args:
            messages: Conversation to send.
            stream: Ask the server for an SSE stream.
            throw_on_error: Raise AllAttemptsFailed when every attempt fails
                instead of ending the sequence silently.
            include_tools: Send the tool provider's definitions.

        Yields:
            Chunks in arrival order.

        Raises:
            ConfigurationError: No endpoint, or the request is too large.
                Never retried.
            AllAttemptsFailed: Only when throw_on_error is set.
        """
        start = time.monotonic()
        self.stats.increment_api_requests()

        try:
            try:
                self.config.validate_endpoint()
                body = self.encode_request(
                    self.prepare_request_data(messages, stream=stream, include_tools=include_tools)
                )
            except Exception:
                self.stats.increment_api_errors()
                raise

            endpoint = self.config.chat_endpoint
            max_attempts = max(1, self.config.retry.max_retries)
            last_error: TransientError | None = None

            for attempt in range(1, max_attempts + 1):
                if self.config.debug:
                    logger.debug(
                        f"Attempt {attempt}: POST {endpoint} "
                        f"(model: {self.config.api.model}, messages: {len(messages)}, "
                        f"request size: {len(body)} bytes)"
                    )

                yielded = False
                try:
                    async with aclosing(self._send(endpoint, body)) as chunks:
                        async for chunk in chunks:
                            yielded = True
                            yield chunk

                    self.stats.increment_api_success()
                    return
                except GeneratorExit:
                    # Consumer stopped reading; the response was received fine
                    self.stats.increment_api_success()
                    raise
                except TransientError as e:
                    last_error = e
                    if yielded:
                        # Partial output already reached the consumer; a retry would duplicate it.
                        logger.warning(f"Stream interrupted after partial output: {self._redact(str(e))}")
                        break
                    if attempt < max_attempts:
                        delay = self.retry_delay(attempt)
                        logger.warning(
                            f"Attempt {attempt}/{max_attempts} failed: {self._redact(str(e))}"
                            + (f", retrying in {delay:.0f}s" if delay else ", retrying")
                        )
                        if delay:
                            await asyncio.sleep(delay)

            self.stats.increment_api_errors()
            failure = AllAttemptsFailed(attempt, last_error)
            logger.error(self._redact(str(failure)))

            if throw_on_error:
                raise failure from last_error
        finally:
            self.stats.add_api_time(time.monotonic() - start)

    async def _send(self, endpoint: str, body: bytes) -> AsyncIterator[StreamChunk]:
        """One HTTP attempt. Raises HttpError or TransportError."""
        deadline = time.monotonic() + self.config.timeouts.total

        try:
            async with self._client().stream(
                "POST",
                endpoint,
                content=body,
                headers=self._build_headers(),
                timeout=self._timeout(),
            ) as response:
                if not response.is_success:
                    detail = (await response.aread())[:500].decode("utf-8", errors="replace")
                    logger.error(
                        f"HTTP error response: {response.status_code} "
                        f"{response.reason_phrase}: {self._redact(detail)}"
                    )
                    raise HttpError(response.status_code, response.reason_phrase)

                content_type = response.headers.get("content-type", "")
                if any(kind in content_type for kind in _STREAMING_CONTENT_TYPES):
                    async with aclosing(iter_sse_chunks(response.aiter_bytes())) as chunks:
                        async for chunk in chunks:
                            if time.monotonic() > deadline:
                                raise TransportError(
                                    f"Total timeout of {self.config.timeouts.total}s exceeded"
                                )
                            yield chunk
                else:
                    raw = await response.aread()
                    try:
                        data = json.loads(raw)
                    except ValueError as e:
                        # Covers both invalid JSON and bodies that are not valid UTF-8
                        raise TransportError(f"Malformed JSON response: {e}") from e
                    chunk = synthetic_chunk(data) if isinstance(data, dict) else None
                    if chunk is not None:
                        yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

    def update_token_stats(self, usage: dict[str, Any] | None) -> None:
        """Fold a usage block from the API into the statistics."""
        if not usage:
            return
        if usage.get("prompt_tokens"):
            self.stats.add_prompt_tokens(usage["prompt_tokens"])
        if usage.get("completion_tokens"):
            self.stats.add_completion_tokens(usage["completion_tokens"])
        if usage.get("total_tokens"):
            self.stats.tokens_processed = usage["total_tokens"]
        self.stats.add_usage_info(usage)
