"""
In-process tool definitions.

Plugins declare tools as async Python handlers:

    class SearchArgs(BaseModel):
        query: str

    @tool("SearchExample", "Search for information in your domain", SearchArgs)
    async def search(args):
        return {"content": [{"type": "text", "text": f"Results for {args['query']}"}]}

At query time the engine bundles a plugin's tools into an
InProcessToolServer, registered with the provider under
"{plugin.name}-tools".
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field

from answerengine.config.logging import get_logger
from answerengine.tools.base import ToolAdapter

logger = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolDefinition(BaseModel):
    """A named tool with a JSON-schema parameter schema and an async handler."""

    name: str = Field(min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: ToolHandler

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def schema_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def _as_json_schema(schema: dict[str, Any] | type[BaseModel] | None) -> dict[str, Any]:
    if schema is None:
        return {"type": "object", "properties": {}}
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    return dict(schema)


def tool(
    name: str,
    description: str,
    input_schema: dict[str, Any] | type[BaseModel] | None = None,
    handler: ToolHandler | None = None,
):
    """
    Create a ToolDefinition.

    Usable directly, ``tool(name, description, schema, handler)``, or as a
    decorator, ``@tool(name, description, schema)``. ``input_schema`` may be a
    JSON-schema dict or a pydantic model class.
    """
    schema = _as_json_schema(input_schema)

    if handler is not None:
        return ToolDefinition(name=name, description=description, input_schema=schema, handler=handler)

    def decorator(func: ToolHandler) -> ToolDefinition:
        return ToolDefinition(name=name, description=description, input_schema=schema, handler=func)

    return decorator


class InProcessToolServer(ToolAdapter):
    """Exposes a list of ToolDefinitions through the ToolAdapter interface."""

    def __init__(self, name: str, version: str, tools: list[ToolDefinition]):
        self.name = name
        self.version = version
        self._tools = {t.name: t for t in tools}

    async def initialize(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        definition = self._tools.get(tool_name)
        if definition is None:
            raise ValueError(f"Unknown tool '{tool_name}' on server '{self.name}'")

        result = await definition.handler(arguments)
        if isinstance(result, str):
            return {"content": [{"type": "text", "text": result}], "is_error": False}

        return {
            "content": list(result.get("content") or []),
            "is_error": bool(result.get("is_error") or result.get("isError")),
        }

    async def list_tools(self) -> list[dict[str, Any]]:
        return [definition.schema_dict() for definition in self._tools.values()]


def create_tool_server(name: str, version: str, tools: list[ToolDefinition]) -> InProcessToolServer:
    """Bundle tool definitions into a named, versioned server handle."""
    logger.debug(f"Registering {len(tools)} tool(s) under '{name}' v{version}")
    return InProcessToolServer(name=name, version=version, tools=tools)
