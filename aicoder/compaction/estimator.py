"""Token estimation for messages.

Character-class heuristic, fast and dependency-free. It is not a real
tokenizer; the weights are fixed so estimates stay comparable across
sessions.
"""

import json
from typing import Any, Iterable

from aicoder.compaction.types import Message

TOKEN_LETTER_WEIGHT = 4.2
TOKEN_NUMBER_WEIGHT = 3.5
TOKEN_PUNCTUATION_WEIGHT = 1.0
TOKEN_WHITESPACE_WEIGHT = 0.15
TOKEN_OTHER_WEIGHT = 3.0

PUNCTUATION = frozenset("!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~")


def estimate_tokens(text: str) -> int:
    """
    Estimate the number of tokens in a text string.

    Letters, digits and other characters are divided by their weight;
    punctuation and whitespace are multiplied by theirs.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (never negative).
    """
    if not text:
        return 0

    letters = digits = punctuation = whitespace = other = 0
    for char in text:
        if char.isascii() and char.isalpha():
            letters += 1
        elif char.isascii() and char.isdigit():
            digits += 1
        elif char in PUNCTUATION:
            punctuation += 1
        elif char.isspace():
            whitespace += 1
        else:
            other += 1

    estimate = (
        letters / TOKEN_LETTER_WEIGHT
        + digits / TOKEN_NUMBER_WEIGHT
        + punctuation * TOKEN_PUNCTUATION_WEIGHT
        + whitespace * TOKEN_WHITESPACE_WEIGHT
        + other / TOKEN_OTHER_WEIGHT
    )
    return _round_half_up(max(0.0, estimate))


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; estimates round .5 upwards.
    return int(value + 0.5)


def serialize_message(message: Message) -> str:
    """Canonical compact JSON form used for estimation."""
    return json.dumps(message.to_dict(), separators=(",", ":"), ensure_ascii=False)


def estimate_message_tokens(message: Message) -> int:
    """Estimate tokens for a single message without touching any cache."""
    return estimate_tokens(serialize_message(message))


def estimate_tool_definitions_tokens(definitions: list[dict[str, Any]]) -> int:
    """Estimate tokens for the tool schemas sent with each request."""
    if not definitions:
        return 0
    return estimate_tokens(json.dumps(definitions, separators=(",", ":"), ensure_ascii=False))


class TokenEstimator:
    """
    Cached message-list estimation.

    Entries are keyed by Message.id. Owners evict entries for messages that
    leave their sequence (`forget` / `retain`) so the cache stays bounded.
    """

    def __init__(self) -> None:
        self._cache: dict[int, int] = {}
        self.tool_definitions_tokens = 0

    def __len__(self) -> int:
        return len(self._cache)

    def estimate_messages_tokens(self, messages: Iterable[Message]) -> int:
        messages = list(messages)
        if not messages:
            return 0

        total = 0
        for msg in messages:
            tokens = self._cache.get(msg.id)
            if tokens is None:
                tokens = estimate_message_tokens(msg)
                self._cache[msg.id] = tokens
            total += tokens
        return total + self.tool_definitions_tokens

    def set_tool_definitions_tokens(self, tokens: int) -> None:
        self.tool_definitions_tokens = max(0, tokens)

    def forget(self, messages: Iterable[Message]) -> None:
        for msg in messages:
            self._cache.pop(msg.id, None)

    def retain(self, messages: Iterable[Message]) -> None:
        """Drop every cache entry not belonging to `messages`."""
        keep = {msg.id for msg in messages}
        for key in [k for k in self._cache if k not in keep]:
            del self._cache[key]

    def clear(self) -> None:
        self._cache.clear()
        self.tool_definitions_tokens = 0


# Process-wide default estimator
_default_estimator = TokenEstimator()


def get_default_estimator() -> TokenEstimator:
    return _default_estimator


def estimate_messages_tokens(messages: list[Message]) -> int:
    """
    Estimate total tokens for a list of messages plus the last known
    tool-definition tokens.

    Args:
        messages: List of messages.

    Returns:
        Total estimated token count.
    """
    return _default_estimator.estimate_messages_tokens(messages)


def set_tool_definitions_tokens(tokens: int) -> None:
    """Record the size of the tool schemas sent with each request."""
    _default_estimator.set_tool_definitions_tokens(tokens)


def clear_token_cache() -> None:
    """Clear cached estimates; call whenever a message list is replaced wholesale."""
    _default_estimator.clear()
