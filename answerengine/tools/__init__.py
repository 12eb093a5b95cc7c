"""
Tool Integration Layer.

Provides the tool definitions plugins declare, the in-process server that
bundles them for the model provider, and an adapter for external MCP servers.
"""

from answerengine.tools.base import ToolAdapter, content_text, running_tool_servers
from answerengine.tools.mcp_stdio import StdioMCPToolAdapter
from answerengine.tools.registry import (
    InProcessToolServer,
    ToolDefinition,
    create_tool_server,
    tool,
)

__all__ = [
    "InProcessToolServer",
    "StdioMCPToolAdapter",
    "ToolAdapter",
    "ToolDefinition",
    "content_text",
    "create_tool_server",
    "running_tool_servers",
    "tool",
]
