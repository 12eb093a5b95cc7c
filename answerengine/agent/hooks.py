"""
Operator hook pipeline.

Plugins may supply three optional hooks, each sync or async:

    before_query(prompt, context)     -> str | None | Accepted | Rejected
    after_response(response, context) -> str | None | Unchanged | Replaced
    should_escalate(context, response) -> bool

The two transform hooks give ``None`` opposite meanings: ``None`` from
before_query rejects the query, ``None`` from after_response keeps the
original response. HookPipeline turns both into explicit result types so the
engine never has to interpret a bare ``None``.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, Field

from answerengine.agent.history import Turn


class PluginContext(BaseModel):
    """Context passed to plugin hooks and prompt builders."""

    prompt: str
    history: list[Turn] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class Accepted:
    """before_query let the prompt through, possibly rewritten."""

    prompt: str


@dataclass(frozen=True)
class Rejected:
    """before_query vetoed the prompt."""

    reason: str | None = None


@dataclass(frozen=True)
class Unchanged:
    """after_response kept the original response."""


@dataclass(frozen=True)
class Replaced:
    """after_response substituted a new response."""

    response: str


BeforeQueryResult = Union[Accepted, Rejected]
AfterResponseResult = Union[Unchanged, Replaced]

BeforeQueryHook = Callable[[str, PluginContext], Any]
AfterResponseHook = Callable[[str, PluginContext], Any]
EscalationHook = Callable[[PluginContext, str], Union[bool, Awaitable[bool]]]


async def maybe_await(value: Any) -> Any:
    """Resolve ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class HookPipeline:
    """Applies a plugin's pre/post hooks and escalation predicate."""

    def __init__(
        self,
        before_query: BeforeQueryHook | None = None,
        after_response: AfterResponseHook | None = None,
        should_escalate: EscalationHook | None = None,
    ):
        self._before_query = before_query
        self._after_response = after_response
        self._should_escalate = should_escalate

    async def before(self, prompt: str, context: PluginContext) -> BeforeQueryResult:
        if self._before_query is None:
            return Accepted(prompt)

        result = await maybe_await(self._before_query(prompt, context))
        if result is None:
            return Rejected()
        if isinstance(result, (Accepted, Rejected)):
            return result
        if isinstance(result, str):
            return Accepted(result)
        raise TypeError(
            f"before_query must return str, None, Accepted or Rejected, got {type(result).__name__}"
        )

    async def after(self, response: str, context: PluginContext) -> AfterResponseResult:
        if self._after_response is None:
            return Unchanged()

        result = await maybe_await(self._after_response(response, context))
        if result is None:
            return Unchanged()
        if isinstance(result, (Unchanged, Replaced)):
            return result
        if isinstance(result, str):
            return Replaced(result)
        raise TypeError(
            f"after_response must return str, None, Unchanged or Replaced, got {type(result).__name__}"
        )

    async def escalate(self, context: PluginContext, response: str) -> bool:
        if self._should_escalate is None:
            return False
        return bool(await maybe_await(self._should_escalate(context, response)))
