"""Configuration schema using Pydantic."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from aicoder.errors import ConfigurationError


class ApiConfig(BaseModel):
    """Chat-completion endpoint configuration."""
    base_url: str = ""  # e.g. https://api.openai.com/v1
    api_key: str = ""  # Optional, some local providers don't need one
    model: str = ""
    temperature: float | None = None  # Only sent when explicitly set
    max_tokens: int | None = None  # Only sent when explicitly set


class TimeoutsConfig(BaseModel):
    """HTTP timeouts in seconds."""
    connect: float = 10.0
    read: float = 30.0  # Max silence between streamed chunks
    total: float = 300.0  # Whole request, per attempt


class RetryConfig(BaseModel):
    """Retry policy for chat-completion requests."""
    max_retries: int = 3  # Total attempts, not extra ones
    max_wait: float = 64.0  # Backoff cap in seconds, <= 0 disables waiting


class ContextConfig(BaseModel):
    """Context window and compaction configuration."""
    size: int = 128000
    compact_percentage: int = 0  # 0 disables auto-compaction
    compact_protect_rounds: int = 2
    prune_percentage: int = 50


class Config(BaseSettings):
    """Root configuration for aicoder."""
    api: ApiConfig = Field(default_factory=ApiConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    debug: bool = False

    @property
    def chat_endpoint(self) -> str:
        """Full URL of the chat-completions endpoint."""
        return f"{self.api.base_url.rstrip('/')}/chat/completions"

    @property
    def auto_compact_threshold(self) -> int:
        """Token count at which auto-compaction kicks in (0 = disabled)."""
        percentage = self.context.compact_percentage
        if percentage <= 0:
            return 0
        return int(self.context.size * (min(percentage, 100) / 100))

    @property
    def auto_compact_enabled(self) -> bool:
        return self.auto_compact_threshold > 0

    def validate_endpoint(self) -> None:
        """Raise ConfigurationError if no endpoint is configured."""
        if not self.api.base_url:
            raise ConfigurationError(
                "Missing API endpoint: set API_BASE_URL or OPENAI_BASE_URL "
                "(e.g. https://your-api-provider.com/v1)"
            )

    class Config:
        env_prefix = "AICODER_"
        env_nested_delimiter = "__"
