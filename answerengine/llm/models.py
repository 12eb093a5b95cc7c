"""
Request and error types shared by model providers.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from answerengine.agent.cancellation import CancellationToken
from answerengine.tools.base import ToolAdapter


class LLMError(Exception):
    """Raised when the model provider cannot be called at all (bad config, missing key)."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ProviderRequest(BaseModel):
    """One invocation of the remote model."""

    prompt: str = Field(description="Full user prompt, history transcript included")
    system_prompt: str = ""
    permission_mode: Literal["default", "acceptEdits", "bypassPermissions", "plan"] = "bypassPermissions"
    allowed_tools: list[str] = Field(default_factory=list)
    tool_servers: dict[str, ToolAdapter] = Field(default_factory=dict)
    cancellation: CancellationToken | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)
