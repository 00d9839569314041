"""Tool registry feeding tool definitions into API requests."""

from typing import Any

from aicoder.tools.base import Tool


def _normalize_parameters(parameters: Any) -> dict[str, Any]:
    """Ensure a top-level object schema, which function tools require."""
    if not isinstance(parameters, dict):
        return {"type": "object", "properties": {}}
    if "type" not in parameters:
        patched = dict(parameters)
        patched["type"] = "object"
        patched.setdefault("properties", {})
        return patched
    return parameters


class ToolRegistry:
    """
    Registry of tools offered to the model.

    Definitions are returned in registration order. Re-registering a name
    replaces the tool in place.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        definitions: list[dict[str, Any]] = []
        for tool in self._tools.values():
            definition = tool.to_schema()
            fn = dict(definition["function"])
            fn["parameters"] = _normalize_parameters(fn.get("parameters"))
            definitions.append({**definition, "function": fn})
        return definitions

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
