"""
MCP stdio tool adapter.

Runs an external MCP server as a subprocess and exposes its tools to the
model provider. Register one on a plugin via ``tool_servers``:

    plugin = create_plugin(
        ...,
        tool_servers={"dice": StdioMCPToolAdapter("node", ["dice-server/index.js"])},
        allowed_tools=["SearchExample", "roll_dice"],
    )

External tools are only offered to the model when listed in
``allowed_tools``; the default allow-list covers the plugin's own tools.
"""

from __future__ import annotations

from typing import Any

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

from answerengine.config.logging import get_logger
from answerengine.tools.base import ToolAdapter

logger = get_logger(__name__)


class StdioMCPToolAdapter(ToolAdapter):
    """
    Tool adapter speaking MCP (JSON-RPC over stdio) to a subprocess.

    Args:
        command: Executable to launch, e.g. "node" or "python"
        args: Arguments for the executable
        env: Optional environment for the subprocess
    """

    def __init__(self, command: str, args: list[str] | None = None, env: dict[str, str] | None = None):
        self._command = command
        self._args = list(args or [])
        self._env = env
        self._initialized = False
        self._session: ClientSession | None = None
        self._stdio_context = None
        self._session_context = None

    async def initialize(self) -> None:
        """Start the MCP server subprocess and perform the handshake."""
        if self._initialized:
            return

        server_params = StdioServerParameters(command=self._command, args=self._args, env=self._env)

        self._stdio_context = stdio_client(server_params)
        read_stream, write_stream = await self._stdio_context.__aenter__()

        self._session_context = ClientSession(read_stream, write_stream)
        self._session = await self._session_context.__aenter__()

        await self._session.initialize()
        self._initialized = True
        logger.info(f"MCP server started: {self._command} {' '.join(self._args)}")

    async def shutdown(self) -> None:
        """Close the session and terminate the subprocess."""
        if not self._initialized:
            return

        if self._session_context is not None:
            await self._session_context.__aexit__(None, None, None)
            self._session_context = None
            self._session = None

        if self._stdio_context is not None:
            await self._stdio_context.__aexit__(None, None, None)
            self._stdio_context = None

        self._initialized = False

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Call a tool on the MCP server."""
        if not self._initialized:
            raise RuntimeError("Tool adapter not initialized")

        result = await self._session.call_tool(tool_name, arguments)

        # MCP returns a list of typed content blocks; keep the text ones
        blocks = [
            {"type": "text", "text": content.text}
            for content in result.content
            if hasattr(content, "text")
        ]
        return {"content": blocks, "is_error": bool(getattr(result, "isError", False))}

    async def list_tools(self) -> list[dict[str, Any]]:
        """List available tools from the MCP server."""
        if not self._initialized:
            raise RuntimeError("Tool adapter not initialized")

        result = await self._session.list_tools()
        return [
            {
                "name": t.name,
                "description": t.description or "",
                "input_schema": t.inputSchema,
            }
            for t in result.tools
        ]
