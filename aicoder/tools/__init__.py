"""Tool definitions offered to the model."""

from aicoder.tools.base import Tool
from aicoder.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry"]
