"""Shared fixtures for aicoder tests."""

import asyncio
import os
from typing import Any

import pytest

from aicoder.compaction.types import Message
from aicoder.config.loader import _LEGACY_ENV
from aicoder.config.schema import ApiConfig, Config, ContextConfig, RetryConfig

SUMMARY_TEXT = (
    "The user asked two questions and the assistant answered both; "
    "no files were modified yet."
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's environment out of config resolution."""
    for _, _, _, names in _LEGACY_ENV:
        for name in names:
            monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("AICODER_"):
            monkeypatch.delenv(name, raising=False)


def make_config(**context: Any) -> Config:
    return Config(
        api=ApiConfig(base_url="https://api.example.com/v1", api_key="sk-test-key-123", model="test-model"),
        retry=RetryConfig(max_retries=3, max_wait=0),
        context=ContextConfig(**context),
    )


class FakeClient:
    """Scripted stand-in for StreamingClient used by compaction tests."""

    def __init__(self, reply: str = SUMMARY_TEXT, error: Exception | None = None, config: Config | None = None):
        self.config = config or make_config()
        self.reply = reply
        self.error = error
        self.requests: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def stream_request(
        self,
        messages: list[Message],
        stream: bool = True,
        throw_on_error: bool = False,
        include_tools: bool = True,
    ):
        self.requests.append({
            "messages": messages,
            "stream": stream,
            "throw_on_error": throw_on_error,
            "include_tools": include_tools,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        yield {"choices": [{"delta": {"content": self.reply}, "finish_reason": "stop"}]}


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


def conversation() -> list[Message]:
    """System prompt followed by two plain rounds."""
    return [
        Message(role="system", content="S"),
        Message(role="user", content="Q1"),
        Message(role="assistant", content="A1"),
        Message(role="user", content="Q2"),
        Message(role="assistant", content="A2"),
    ]
