"""Grouping, round detection and splicing for compaction."""

from loguru import logger

from aicoder.compaction.types import Message, MessageGroup, Round


def group_messages(messages: list[Message]) -> list[MessageGroup]:
    """
    Group messages into atomic units so tool calls stay with their results.

    A group closes after a tool message once every call of the preceding
    assistant message has its result, or just before a user message when
    the group already holds something else.

    Args:
        messages: Messages to group (system and summary messages excluded).

    Returns:
        Groups in original order; flattening them reproduces the input.
    """
    groups: list[MessageGroup] = []
    current: list[Message] = []
    pending: set[str] = set()  # tool calls of the group's assistant still unanswered

    for msg in messages:
        current.append(msg)

        if msg.role == "assistant" and msg.tool_calls:
            pending = {tc.id for tc in msg.tool_calls}
        elif msg.role == "tool":
            pending.discard(msg.tool_call_id or "")
            if not pending:
                groups.append(_make_group(current))
                current = []
        elif msg.role == "user" and len(current) > 1:
            pending = set()
            # The new user message seeds the next group
            groups.append(_make_group(current[:-1]))
            current = [msg]

    if current:
        groups.append(_make_group(current))

    return groups


def _make_group(messages: list[Message]) -> MessageGroup:
    first = messages[0]
    return MessageGroup(
        messages=list(messages),
        is_summary=first.is_summary,
        is_user_turn=first.role == "user",
    )


def identify_rounds(messages: list[Message]) -> list[Round]:
    """
    Split a conversation into rounds, ignoring system and summary messages.

    A round runs from one user message up to, not including, the next.
    """
    rounds: list[Round] = []
    current: list[Message] = []

    for msg in messages:
        if msg.role == "system" or msg.is_summary:
            continue

        if msg.role == "user" and current:
            rounds.append(Round(messages=current))
            current = []
        current.append(msg)

    if current:
        rounds.append(Round(messages=current))

    return rounds


def flatten(groups: list[MessageGroup]) -> list[Message]:
    return [msg for group in groups for msg in group.messages]


def extend_over_tool_results(messages: list[Message], selected: list[Message]) -> list[Message]:
    """
    Extend a leading slice of `messages` so it never ends between an
    assistant tool call and the tool results answering it.
    """
    if not selected:
        return selected

    end = len(selected)
    pending: set[str] = set()
    for msg in selected:
        if msg.role == "assistant" and msg.tool_calls:
            pending = {tc.id for tc in msg.tool_calls}
        elif msg.role == "tool":
            pending.discard(msg.tool_call_id or "")
        else:
            pending = set()

    while pending and end < len(messages):
        nxt = messages[end]
        if nxt.role != "tool" or nxt.tool_call_id not in pending:
            break
        pending.discard(nxt.tool_call_id)
        end += 1

    return list(messages[:end])


def replace_messages_with_summary(
    messages: list[Message],
    to_replace: list[Message],
    summary: Message,
) -> list[Message]:
    """
    Replace the span from to_replace[0] to to_replace[-1] with `summary`.
    Summary and system messages inside the span stay, ahead of `summary`.

    The span is located by message id. Messages that are not found by id
    (copies, or data rebuilt from disk) fall back to the first match on
    (role, content), which is ambiguous when two messages are identical.
    """
    if not to_replace:
        return messages

    first_index = _index_by_id(messages, to_replace[0])
    if first_index is None:
        first_index = _index_by_content(messages, to_replace[0], 0)
        if first_index is not None:
            logger.warning("Compaction span located by content match; duplicates may be ambiguous")
    if first_index is None:
        return messages

    last_index = _index_by_id(messages, to_replace[-1], first_index)
    if last_index is None:
        last_index = _index_by_content(messages, to_replace[-1], first_index)
    if last_index is None:
        last_index = min(first_index + len(to_replace), len(messages)) - 1

    # Earlier summaries and system messages inside the span are not summarized; keep them
    replaced_ids = {msg.id for msg in to_replace}
    kept = [
        msg for msg in messages[first_index:last_index + 1]
        if msg.id not in replaced_ids and (msg.is_summary or msg.role == "system")
    ]

    return [*messages[:first_index], *kept, summary, *messages[last_index + 1:]]


def _index_by_id(messages: list[Message], target: Message, start: int = 0) -> int | None:
    for i in range(start, len(messages)):
        if messages[i].id == target.id:
            return i
    return None


def _index_by_content(messages: list[Message], target: Message, start: int) -> int | None:
    for i in range(start, len(messages)):
        msg = messages[i]
        if msg.role == target.role and msg.content == target.content:
            return i
    return None
