"""Error taxonomy shared across aicoder."""

MAX_REQUEST_BYTES = 1024 * 1024


class AICoderError(Exception):
    """Base class for all aicoder errors."""


class ConfigurationError(AICoderError):
    """A request that can never succeed as configured. Never retried."""


class RequestTooLarge(ConfigurationError):
    """The serialized request body exceeds the size limit."""

    def __init__(self, size: int, limit: int = MAX_REQUEST_BYTES):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Request too large ({size} bytes). Maximum {limit} bytes allowed. "
            "Try reducing context or file sizes."
        )


class TransientError(AICoderError):
    """A failure worth retrying."""


class HttpError(TransientError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
        super().__init__(message)


class TransportError(TransientError):
    """Network, protocol or timeout failure below the HTTP layer."""


class AllAttemptsFailed(AICoderError):
    """Every attempt of a request failed."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All API attempts failed. Last error: {last_error}")
