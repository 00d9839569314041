"""Tests for grouping, summarization and the compaction service."""

import pytest

from aicoder.compaction.grouping import (
    extend_over_tool_results,
    flatten,
    group_messages,
    identify_rounds,
    replace_messages_with_summary,
)
from aicoder.compaction.service import CompactionService
from aicoder.compaction.summarizer import (
    format_message_for_summary,
    format_messages_for_summary,
    generate_summary,
    recency_tag,
)
from aicoder.compaction.types import (
    DEFAULT_SUMMARY_FALLBACK,
    SUMMARY_PREFIX,
    Message,
    MessageKind,
    ToolCall,
)
from aicoder.errors import AllAttemptsFailed, HttpError

from conftest import SUMMARY_TEXT, FakeClient, conversation


# ── Helpers ─────────────────────────────────────────────────────────


def user(text: str) -> Message:
    return Message(role="user", content=text)


def assistant(text: str, *call_ids: str) -> Message:
    calls = [ToolCall(id=cid, function_name="read_file", function_arguments='{"path":"x"}') for cid in call_ids]
    return Message(role="assistant", content=text, tool_calls=calls or None)


def tool(call_id: str, text: str = "result") -> Message:
    return Message(role="tool", content=text, tool_call_id=call_id)


def contents(messages: list[Message]) -> list[str | None]:
    return [m.content for m in messages]


def assert_tool_results_paired(messages: list[Message]) -> None:
    """Every tool message must follow its assistant, possibly after sibling results."""
    for i, msg in enumerate(messages):
        if msg.role != "tool":
            continue
        j = i - 1
        while j >= 0 and messages[j].role == "tool":
            j -= 1
        assert j >= 0 and messages[j].role == "assistant", f"orphaned tool result at {i}"
        assert msg.tool_call_id in {tc.id for tc in messages[j].tool_calls or []}


# ── Message types ───────────────────────────────────────────────────


class TestMessage:
    def test_summary_round_trip(self):
        summary = Message.summary("recap")
        assert summary.role == "user"
        assert summary.content == f"{SUMMARY_PREFIX}recap"

        restored = Message.from_dict(summary.to_dict())
        assert restored.kind is MessageKind.SUMMARY
        assert restored.is_summary

    def test_plain_user_not_summary(self):
        assert not Message.from_dict({"role": "user", "content": "hello"}).is_summary

    def test_tool_call_wire_form(self):
        msg = Message.from_dict({
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "ls", "arguments": "{}"}}],
        })
        assert msg.tool_calls[0].function_name == "ls"
        assert msg.to_dict()["tool_calls"][0] == {
            "id": "c1",
            "type": "function",
            "function": {"name": "ls", "arguments": "{}"},
        }

    def test_ids_are_unique_and_ignored_by_equality(self):
        a, b = user("x"), user("x")
        assert a.id != b.id
        assert a == b


# ── Grouping ────────────────────────────────────────────────────────


class TestGroupMessages:
    def test_plain_rounds(self):
        groups = group_messages([user("Q1"), assistant("A1"), user("Q2"), assistant("A2")])
        assert [contents(g.messages) for g in groups] == [["Q1", "A1"], ["Q2", "A2"]]
        assert all(g.is_user_turn for g in groups)

    def test_tool_result_closes_group(self):
        messages = [user("Q"), assistant("", "c1"), tool("c1"), assistant("done")]
        groups = group_messages(messages)
        assert [len(g.messages) for g in groups] == [3, 1]

    def test_multiple_tool_calls_stay_together(self):
        messages = [user("Q"), assistant("", "c1", "c2"), tool("c1"), tool("c2"), user("next")]
        groups = group_messages(messages)
        assert [len(g.messages) for g in groups] == [4, 1]

    def test_flatten_reproduces_input(self):
        messages = [
            user("Q1"), assistant("", "c1"), tool("c1"), assistant("A1"),
            user("Q2"), user("Q2 again"), assistant("", "c2", "c3"), tool("c2"), tool("c3"),
        ]
        assert flatten(group_messages(messages)) == messages

    def test_user_message_not_duplicated(self):
        messages = [user("Q1"), assistant("A1"), user("Q2")]
        assert sum(len(g.messages) for g in group_messages(messages)) == 3

    def test_empty(self):
        assert group_messages([]) == []


class TestIdentifyRounds:
    def test_skips_system_and_summaries(self):
        messages = [
            Message(role="system", content="S"),
            Message.summary("old"),
            user("Q1"), assistant("A1"),
            user("Q2"), assistant("", "c1"), tool("c1"),
        ]
        rounds = identify_rounds(messages)
        assert [contents(r.messages) for r in rounds] == [["Q1", "A1"], ["Q2", "", "result"]]

    def test_leading_assistant_forms_round(self):
        rounds = identify_rounds([assistant("hello"), user("Q")])
        assert len(rounds) == 2


class TestExtendOverToolResults:
    def test_extends_to_answer_pending_calls(self):
        messages = [user("Q"), assistant("", "c1", "c2"), tool("c1"), tool("c2"), user("next")]
        selected = extend_over_tool_results(messages, messages[:2])
        assert selected == messages[:4]

    def test_no_extension_when_complete(self):
        messages = [user("Q"), assistant("A"), user("next")]
        assert extend_over_tool_results(messages, messages[:2]) == messages[:2]


class TestReplaceMessagesWithSummary:
    def test_replaces_span_by_identity(self):
        messages = conversation()
        summary = Message.summary("s")
        result = replace_messages_with_summary(messages, messages[1:3], summary)
        assert contents(result) == ["S", summary.content, "Q2", "A2"]

    def test_duplicate_content_uses_identity(self):
        first, second = user("same"), user("same")
        messages = [first, assistant("a"), second, assistant("b")]
        summary = Message.summary("s")
        result = replace_messages_with_summary(messages, [second, messages[3]], summary)
        assert result[0] is first
        assert result[-1] is summary

    def test_falls_back_to_content_match(self):
        messages = conversation()
        copies = [Message.from_dict(m.to_dict()) for m in messages[1:3]]
        result = replace_messages_with_summary(messages, copies, Message.summary("s"))
        assert len(result) == 4

    def test_keeps_summaries_inside_span(self):
        old = Message.summary("older")
        messages = [user("Q1"), old, user("Q2"), assistant("A2")]
        summary = Message.summary("s")
        result = replace_messages_with_summary(messages, [messages[0], messages[2]], summary)
        assert result == [old, summary, messages[3]]

    def test_not_found_returns_input(self):
        messages = conversation()
        assert replace_messages_with_summary(messages, [user("missing")], Message.summary("s")) is messages


# ── Summarizer ──────────────────────────────────────────────────────


class TestFormatting:
    def test_recency_tags(self):
        assert recency_tag(1, 10) == "🔵 OLD (First 30%)"
        assert recency_tag(3, 10) == "🟢 MIDDLE"
        assert recency_tag(6, 10) == "🟡 RECENT (Last 40%)"
        assert recency_tag(10, 10) == "🔴 VERY RECENT (Last 20%)"

    def test_roles(self):
        assert format_message_for_summary(user("hi"), 1, 1) == "[  1/1] 🔴 VERY RECENT (Last 20%) User: hi"
        text = format_message_for_summary(assistant("checking", "c1"), 1, 4)
        assert "Assistant: checking" in text
        assert 'Tool Call: read_file({"path":"x"})' in text

    def test_long_tool_result_truncated(self):
        text = format_message_for_summary(tool("c1", "x" * 600), 2, 2)
        assert "Tool Result (ID: c1)" in text
        assert text.endswith("x" * 500 + "... (truncated for summarization)")

    def test_separator(self):
        transcript = format_messages_for_summary([user("a"), assistant("b")])
        assert transcript.count("\n---\n") == 1


class TestGenerateSummary:
    @pytest.mark.asyncio
    async def test_single_non_streaming_request(self, fake_client: FakeClient):
        summary = await generate_summary([user("Q1"), assistant("A1")], fake_client)

        assert summary == SUMMARY_TEXT
        assert len(fake_client.requests) == 1
        request = fake_client.requests[0]
        assert request["stream"] is False
        assert request["throw_on_error"] is True
        assert request["include_tools"] is False
        assert [m.role for m in request["messages"]] == ["system", "user"]
        assert "Q1" in request["messages"][1].content

    @pytest.mark.asyncio
    async def test_only_summaries(self, fake_client: FakeClient):
        assert await generate_summary([Message.summary("x")], fake_client) == "No previous content"
        assert fake_client.requests == []

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back(self):
        client = FakeClient(reply="   ")
        assert await generate_summary([user("Q")], client) == DEFAULT_SUMMARY_FALLBACK

    @pytest.mark.asyncio
    async def test_short_reply_kept(self):
        client = FakeClient(reply="short")
        assert await generate_summary([user("Q")], client) == "short"

    @pytest.mark.asyncio
    async def test_error_propagates(self):
        client = FakeClient(error=AllAttemptsFailed(3, HttpError(500)))
        with pytest.raises(AllAttemptsFailed):
            await generate_summary([user("Q")], client)


# ── CompactionService ───────────────────────────────────────────────


class TestCompact:
    @pytest.mark.asyncio
    async def test_compacts_oldest_round(self, fake_client: FakeClient):
        messages = conversation()
        service = CompactionService(fake_client, protect_rounds=1)

        result = await service.compact(messages)

        assert len(result) == 4
        assert result[0] is messages[0]
        assert result[1].is_summary
        assert result[1].content == f"{SUMMARY_PREFIX}{SUMMARY_TEXT}"
        assert result[2:] == messages[3:]
        assert "Q1" in fake_client.requests[0]["messages"][1].content
        assert "Q2" not in fake_client.requests[0]["messages"][1].content

    @pytest.mark.asyncio
    async def test_input_not_mutated(self, fake_client: FakeClient):
        messages = conversation()
        before = list(messages)
        await CompactionService(fake_client, protect_rounds=1).compact(messages)
        assert messages == before

    @pytest.mark.asyncio
    async def test_short_conversation_unchanged(self, fake_client: FakeClient):
        messages = conversation()[:3]
        assert await CompactionService(fake_client).compact(messages) is messages
        assert fake_client.requests == []

    @pytest.mark.asyncio
    async def test_everything_protected(self, fake_client: FakeClient):
        messages = conversation()
        assert await CompactionService(fake_client, protect_rounds=5).compact(messages) is messages

    @pytest.mark.asyncio
    async def test_zero_protection_compacts_all(self, fake_client: FakeClient):
        messages = conversation()
        result = await CompactionService(fake_client, protect_rounds=0).compact(messages)
        assert [m.role for m in result] == ["system", "user"]
        assert result[1].is_summary

    def test_protect_rounds_from_config(self, fake_client: FakeClient):
        fake_client.config.context.compact_protect_rounds = 7
        assert CompactionService(fake_client).protect_rounds == 7
        assert CompactionService(fake_client, protect_rounds=-3).protect_rounds == 0

    @pytest.mark.asyncio
    async def test_previous_summaries_kept(self, fake_client: FakeClient):
        old = Message.summary("earlier work")
        messages = [Message(role="system", content="S"), old, *conversation()[1:]]

        result = await CompactionService(fake_client, protect_rounds=1).compact(messages)

        assert result[1] is old
        assert result[2].is_summary
        assert "earlier work" not in fake_client.requests[0]["messages"][1].content

    @pytest.mark.asyncio
    async def test_tool_results_never_orphaned(self, fake_client: FakeClient):
        messages = [
            Message(role="system", content="S"),
            user("Q1"), assistant("", "c1", "c2"), tool("c1"), tool("c2"), assistant("A1"),
            user("Q2"), assistant("", "c3"), tool("c3"),
            user("Q3"), assistant("A3"),
        ]
        for protect in range(0, 6):
            result = await CompactionService(fake_client, protect_rounds=protect).compact(messages)
            assert_tool_results_paired(result)

    @pytest.mark.asyncio
    async def test_failure_propagates(self):
        client = FakeClient(error=AllAttemptsFailed(3, HttpError(503)))
        with pytest.raises(AllAttemptsFailed):
            await CompactionService(client, protect_rounds=1).compact(conversation())


class TestForceCompact:
    @pytest.mark.asyncio
    async def test_rounds(self, fake_client: FakeClient):
        messages = conversation()
        result = await CompactionService(fake_client).force_compact_rounds(messages, 1)
        assert contents(result)[0] == "S"
        assert result[1].is_summary
        assert result[2:] == messages[3:]

    @pytest.mark.asyncio
    async def test_rounds_more_than_available(self, fake_client: FakeClient):
        result = await CompactionService(fake_client).force_compact_rounds(conversation(), 10)
        assert [m.role for m in result] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_zero_rounds_is_noop(self, fake_client: FakeClient):
        messages = conversation()
        assert await CompactionService(fake_client).force_compact_rounds(messages, 0) is messages

    @pytest.mark.asyncio
    async def test_messages(self, fake_client: FakeClient):
        messages = conversation()
        result = await CompactionService(fake_client).force_compact_messages(messages, 3)
        assert contents(result)[0] == "S"
        assert result[1].is_summary
        assert result[2:] == messages[4:]

    @pytest.mark.asyncio
    async def test_messages_never_split_tool_results(self, fake_client: FakeClient):
        messages = [
            Message(role="system", content="S"),
            user("Q"), assistant("", "c1", "c2"), tool("c1"), tool("c2"), assistant("A"),
        ]
        result = await CompactionService(fake_client).force_compact_messages(messages, 2)

        assert [m.role for m in result] == ["system", "user", "assistant"]
        assert result[2].content == "A"
        assert_tool_results_paired(result)

    @pytest.mark.asyncio
    async def test_messages_skip_existing_summaries(self, fake_client: FakeClient):
        old = Message.summary("old")
        messages = [Message(role="system", content="S"), old, user("Q"), assistant("A"), user("Q2")]

        result = await CompactionService(fake_client).force_compact_messages(messages, 2)

        assert result[1] is old
        assert result[2].is_summary
        assert result[3] is messages[4]
