"""
Domain plugin definition.

A DomainPlugin is everything an operator supplies to turn the engine into
an answer service for one domain: system prompt, tools, knowledge, logging
and history settings, and optional hooks. It is read-only for the lifetime
of the AgentEngine that serves it.
"""

from __future__ import annotations

import importlib
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict, Field

from answerengine.agent.hooks import (
    AfterResponseHook,
    BeforeQueryHook,
    EscalationHook,
    PluginContext,
)
from answerengine.agent.interaction_log import LogConfig
from answerengine.knowledge.loader import KnowledgeSource
from answerengine.tools.base import ToolAdapter
from answerengine.tools.registry import ToolDefinition

DEFAULT_TOOL_SERVER_VERSION = "1.0.0"

# Web capabilities offered to the model when no explicit allow-list is set
WEB_TOOLS = ("WebSearch", "WebFetch")

PromptBuilder = Callable[..., Union[str, Awaitable[str]]]


class HistoryConfig(BaseModel):
    """Conversation history configuration."""

    max_turns: int = Field(default=20, ge=0, description="Most recent turns kept per query")
    enabled: bool = Field(default=True, description="Set False to ignore caller history")


class DomainPlugin(BaseModel):
    """Operator-supplied configuration for one answer domain."""

    name: str = Field(min_length=1, description="Plugin name; also names the tool server")
    version: str | None = None
    system_prompt: Union[str, PromptBuilder] = Field(
        description="System prompt, or a (sync or async) builder returning one"
    )
    tools: list[ToolDefinition] = Field(default_factory=list)
    allowed_tools: list[str] | None = Field(
        default=None,
        description="Tool names the model may invoke. Defaults to the plugin's "
                    "own tools plus WebSearch and WebFetch.",
    )
    tool_servers: dict[str, ToolAdapter] = Field(
        default_factory=dict,
        description="Additional externally managed tool services, e.g. MCP servers",
    )
    knowledge_base: Union[str, KnowledgeSource, None] = None
    logging: LogConfig = Field(default_factory=LogConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)

    before_query: BeforeQueryHook | None = None
    after_response: AfterResponseHook | None = None
    should_escalate: EscalationHook | None = None

    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    def resolve_allowed_tools(self) -> list[str]:
        if self.allowed_tools is not None:
            return list(self.allowed_tools)
        return [t.name for t in self.tools] + list(WEB_TOOLS)

    @property
    def tool_server_name(self) -> str:
        return f"{self.name}-tools"


def create_plugin(**kwargs: Any) -> DomainPlugin:
    """Build and validate a DomainPlugin."""
    return DomainPlugin(**kwargs)


def load_plugin(path: str) -> DomainPlugin:
    """
    Import a plugin from a ``module:attribute`` path.

    Raises:
        ValueError: If the path is malformed
        TypeError: If the attribute is not a DomainPlugin
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Plugin path must look like 'package.module:attribute', got {path!r}")

    module = importlib.import_module(module_name)
    plugin = getattr(module, attribute)
    if not isinstance(plugin, DomainPlugin):
        raise TypeError(f"{path} is a {type(plugin).__name__}, not a DomainPlugin")
    return plugin


__all__ = [
    "DomainPlugin",
    "HistoryConfig",
    "LogConfig",
    "KnowledgeSource",
    "PluginContext",
    "PromptBuilder",
    "create_plugin",
    "load_plugin",
]
