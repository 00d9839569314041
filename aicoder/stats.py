"""Session statistics."""

import time
from dataclasses import dataclass, field, fields
from typing import Any


@dataclass
class Stats:
    """Counters shared by the history, the API client and the compactor."""

    api_requests: int = 0
    api_success: int = 0
    api_errors: int = 0
    api_time_spent: float = 0.0
    messages_sent: int = 0
    tokens_processed: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    compactions: int = 0
    current_prompt_size: int = 0
    current_prompt_size_estimated: bool = False
    usage_infos: list[tuple[float, dict[str, Any]]] = field(default_factory=list)

    def increment_api_requests(self) -> None:
        self.api_requests += 1

    def increment_api_success(self) -> None:
        self.api_success += 1

    def increment_api_errors(self) -> None:
        self.api_errors += 1

    def add_api_time(self, seconds: float) -> None:
        self.api_time_spent += seconds

    def increment_messages_sent(self) -> None:
        self.messages_sent += 1

    def increment_compactions(self) -> None:
        self.compactions += 1

    def add_prompt_tokens(self, tokens: int) -> None:
        self.prompt_tokens += tokens

    def add_completion_tokens(self, tokens: int) -> None:
        self.completion_tokens += tokens

    def set_current_prompt_size(self, size: int, estimated: bool = False) -> None:
        self.current_prompt_size = size
        self.current_prompt_size_estimated = estimated

    def add_usage_info(self, usage: dict[str, Any]) -> None:
        self.usage_infos.append((time.time(), usage))

    def summary_lines(self) -> list[str]:
        """Human-readable summary, one line per statistic."""
        lines = [
            f"API Requests: {self.api_requests} "
            f"(Success: {self.api_success}, Errors: {self.api_errors})",
            f"API Time Spent: {self.api_time_spent:.2f}s",
            f"Messages Sent: {self.messages_sent}",
            f"Tokens Processed: {self.tokens_processed:,}",
            f"Prompt Tokens: {self.prompt_tokens:,}",
            f"Completion Tokens: {self.completion_tokens:,}",
            f"Compactions: {self.compactions}",
        ]
        if self.current_prompt_size > 0:
            estimated = " (estimated)" if self.current_prompt_size_estimated else ""
            lines.append(f"Context Size: {self.current_prompt_size:,}{estimated}")
        return lines

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, f.default_factory() if callable(f.default_factory) else f.default)
