"""
Tool server interface.

A tool server is the handle the model provider uses to discover and invoke
a group of tools. The plugin's own tools are served in-process
(InProcessToolServer); external ones run as MCP subprocesses
(StdioMCPToolAdapter). Both are registered with the provider by name.
"""

from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator

from answerengine.config.logging import get_logger

logger = get_logger(__name__)


class ToolAdapter(ABC):
    """
    A named group of tools the model may call during a query.

    Adapters that hold external resources acquire them in initialize() and
    release them in shutdown(); use them as async context managers to pair
    the two.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the server for calls (spawn the subprocess, run the handshake).

        Raises:
            ConnectionError: If the server cannot be reached
        """

    @abstractmethod
    async def shutdown(self) -> None:
        """Release whatever initialize() acquired. Safe to call twice."""

    @abstractmethod
    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Invoke one tool.

        Args:
            tool_name: Tool to run, as listed by list_tools()
            arguments: JSON-compatible arguments chosen by the model

        Returns:
            ``{"content": [blocks], "is_error": bool}``; text blocks look
            like ``{"type": "text", "text": "..."}``

        Raises:
            ValueError: The server has no tool by that name
            RuntimeError: The server was not initialized
        """

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        Describe the tools this server offers.

        Each entry has ``name``, ``description`` and ``input_schema`` (JSON
        schema of the arguments), e.g.::

            {"name": "SearchExample",
             "description": "Search for information in your domain",
             "input_schema": {"type": "object",
                              "properties": {"query": {"type": "string"}},
                              "required": ["query"]}}
        """

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


def content_text(result: dict[str, Any]) -> str:
    """Join the text blocks of a tool result into one string."""
    parts = [
        block.get("text", "")
        for block in result.get("content") or []
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return " ".join(part for part in parts if part)


@asynccontextmanager
async def running_tool_servers(servers: dict[str, ToolAdapter]) -> AsyncIterator[dict[str, ToolAdapter]]:
    """
    Initialize every server for the duration of the block.

    Servers are shut down in reverse order on exit, including when a later
    server fails to start.
    """
    async with AsyncExitStack() as stack:
        for name, adapter in servers.items():
            logger.info(f"Starting tool server '{name}'")
            await stack.enter_async_context(adapter)
        yield servers
        if servers:
            logger.info("Shutting down tool servers...")
