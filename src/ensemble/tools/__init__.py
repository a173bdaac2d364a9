"""Tool abstractions, registry and gateway."""

from .base import Tool, ToolContext, ToolResult, check_fields
from .registry import ToolGateway, ToolRegistry

__all__ = ["Tool", "ToolContext", "ToolResult", "ToolGateway", "ToolRegistry", "check_fields"]
