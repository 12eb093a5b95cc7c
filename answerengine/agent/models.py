"""
Result and error types for the query orchestration engine.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AgentError(Exception):
    """Base class for failures surfaced to callers of AgentEngine."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class QueryRejectedError(AgentError):
    """The beforeQuery hook vetoed the prompt. No provider call was made."""

    def __init__(self, reason: str | None = None):
        message = "Query rejected by beforeQuery hook"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reason = reason


class AgentExecutionError(AgentError):
    """The provider's terminal result reported an error."""

    def __init__(self, message: str = "Agent execution failed."):
        super().__init__(message)


class TokenUsage(BaseModel):
    """Token usage reported by the provider for one query."""

    input_tokens: int = Field(default=0, ge=0, serialization_alias="inputTokens")
    output_tokens: int = Field(default=0, ge=0, serialization_alias="outputTokens")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class AgentResult(BaseModel):
    """Synchronous return value of one orchestration."""

    response: str = Field(description="Final response text, after the afterResponse hook")
    streamed: bool = Field(default=False, description="Whether any text delta was streamed")
    cost: float | None = Field(default=None, description="Cost in USD, if the provider reports it")
    usage: TokenUsage | None = None
    cancelled: bool = Field(
        default=False, description="True if the query was cancelled before the terminal result"
    )
    escalated: bool = Field(
        default=False, description="Advisory signal from the shouldEscalate hook"
    )
