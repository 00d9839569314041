"""Base class for tools exposed to the model."""

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """
    A callable capability the model may request.

    Subclasses describe themselves with a JSON schema; running them is
    up to the host application.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Name used in tool calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description shown to the model."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the arguments."""

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Run the tool and return its textual result."""

    def to_schema(self) -> dict[str, Any]:
        """Tool definition in OpenAI function format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
