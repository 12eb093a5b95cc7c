"""
Model providers.

A provider turns one ProviderRequest into an async stream of provider events
(see answerengine.agent.events) that always ends with exactly one
ResultMessage, unless the caller cancels first.

LiteLLMProvider is the default implementation:

    ProviderRequest
          ↓
    litellm.acompletion(stream=True)  ←→  tool servers (optional loop)
          ↓
    StreamEvent* → AssistantMessage → [ToolResultMessage → next round] → ResultMessage

Design decisions:
- LiteLLM keeps the provider swappable (Anthropic, OpenAI, Ollama...) by
  changing the model string in LLMSettings.
- Tool errors are passed back to the model as error text rather than raised,
  so the model can still answer without the tool.
- A max_tool_rounds limit prevents runaway tool loops. When hit, the next
  request is sent without tool definitions, forcing a text answer.
- An API failure is reported as an error ResultMessage, not an exception,
  so the stream still terminates with its one result event.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import litellm
from litellm import acompletion

from answerengine.agent.events import (
    AssistantMessage,
    ProviderEvent,
    ResultMessage,
    StreamEvent,
    TextBlock,
    ToolResultBlock,
    ToolResultMessage,
    ToolUseBlock,
)
from answerengine.config.logging import get_logger
from answerengine.config.settings import LLMSettings
from answerengine.llm.models import LLMError, ProviderRequest
from answerengine.tools.base import ToolAdapter, content_text

logger = get_logger(__name__)


class ModelProvider(ABC):
    """Abstract interface to a remote language model."""

    @abstractmethod
    def query(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        """
        Invoke the model once and stream its events.

        Implementations must end the stream with exactly one ResultMessage
        and should stop promptly once ``request.cancellation`` is cancelled.
        """


class _PendingToolCall:
    """A tool call being assembled from streamed fragments."""

    def __init__(self, call_id: str | None, name: str):
        self.id = call_id
        self.name = name
        self.arguments = ""

    def parsed_arguments(self) -> dict[str, Any]:
        if not self.arguments:
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError:
            logger.warning(f"Tool '{self.name}' sent malformed arguments: {self.arguments!r}")
            return {}
        return parsed if isinstance(parsed, dict) else {}


class LiteLLMProvider(ModelProvider):
    """
    Streams responses from LiteLLM and runs the tool-use loop.

    Args:
        settings: LLM configuration (model, temperature, max_tokens, api_key, max_tool_rounds)
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    async def _collect_tools(
        self, request: ProviderRequest
    ) -> tuple[list[dict[str, Any]], dict[str, ToolAdapter]]:
        """
        Gather allowed tool schemas from every tool server.

        Returns the LiteLLM (OpenAI-format) definitions and a name → adapter map.
        """
        allowed = set(request.allowed_tools)
        definitions: list[dict[str, Any]] = []
        routes: dict[str, ToolAdapter] = {}

        for server_name, adapter in request.tool_servers.items():
            for schema in await adapter.list_tools():
                name = schema["name"]
                if name not in allowed:
                    continue
                if name in routes:
                    logger.warning(f"Tool '{name}' from '{server_name}' shadowed by an earlier server")
                    continue
                routes[name] = adapter
                definitions.append({
                    "type": "function",
                    "function": {
                        "name": name,
                        "description": schema.get("description", ""),
                        "parameters": schema.get("input_schema") or {"type": "object", "properties": {}},
                    },
                })

        return definitions, routes

    async def _run_tool(
        self, routes: dict[str, ToolAdapter], call: _PendingToolCall, arguments: dict[str, Any]
    ) -> tuple[Any, str, bool]:
        """Execute one tool call. Returns (content blocks, text for the model, is_error)."""
        adapter = routes.get(call.name)
        if adapter is None:
            text = f"Error: Tool '{call.name}' is not available"
            return [{"type": "text", "text": text}], text, True

        try:
            result = await adapter.call(call.name, arguments)
        except Exception as e:
            logger.warning(f"Tool '{call.name}' failed: {e}")
            text = f"Error: Tool '{call.name}' failed: {e}"
            return [{"type": "text", "text": text}], text, True

        return result.get("content") or [], content_text(result), bool(result.get("is_error"))

    def _cost_of(self, response: Any) -> float | None:
        try:
            return float(litellm.completion_cost(completion_response=response))
        except Exception as e:
            logger.debug(f"Cost unavailable for {self._settings.model}: {e}")
            return None

    async def query(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        if not self._settings.api_key:
            raise LLMError("API key not configured. Set LLM__API_KEY in your environment.")

        token = request.cancellation
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        tool_definitions, routes = await self._collect_tools(request)

        input_tokens = 0
        output_tokens = 0
        total_cost: float | None = None
        rounds_used = 0
        text = ""

        while True:
            call_kwargs: dict[str, Any] = {
                "model": self._settings.model,
                "messages": messages,
                "temperature": self._settings.temperature,
                "max_tokens": self._settings.max_tokens,
                "api_key": self._settings.api_key,
                "stream": True,
                "stream_options": {"include_usage": True},
            }
            if tool_definitions and rounds_used < self._settings.max_tool_rounds:
                call_kwargs["tools"] = tool_definitions

            text = ""
            pending: dict[int, _PendingToolCall] = {}
            chunks: list[Any] = []

            try:
                stream = await acompletion(**call_kwargs)
                async for chunk in stream:
                    if token is not None and token.cancelled:
                        logger.info("Provider stream cancelled")
                        return
                    chunks.append(chunk)
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta

                    if delta.content:
                        text += delta.content
                        yield StreamEvent(event={
                            "type": "content_block_delta",
                            "index": 0,
                            "delta": {"type": "text_delta", "text": delta.content},
                        })

                    for fragment in delta.tool_calls or []:
                        call = pending.get(fragment.index)
                        if call is None:
                            call = pending[fragment.index] = _PendingToolCall(
                                fragment.id, fragment.function.name or ""
                            )
                            yield StreamEvent(event={
                                "type": "content_block_start",
                                "index": fragment.index + 1,
                                "content_block": {
                                    "type": "tool_use",
                                    "id": call.id,
                                    "name": call.name,
                                    "input": {},
                                },
                            })
                        if fragment.function.arguments:
                            call.arguments += fragment.function.arguments
            except Exception as e:
                logger.error(f"LLM API call failed: {e}")
                yield ResultMessage(
                    subtype="error_during_execution",
                    is_error=True,
                    total_cost_usd=total_cost,
                    usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
                    num_turns=rounds_used + 1,
                    errors=[str(e)],
                )
                return

            built = litellm.stream_chunk_builder(chunks, messages=messages) if chunks else None
            if built is not None and getattr(built, "usage", None) is not None:
                input_tokens += built.usage.prompt_tokens or 0
                output_tokens += built.usage.completion_tokens or 0
                cost = self._cost_of(built)
                if cost is not None:
                    total_cost = (total_cost or 0.0) + cost

            calls = [pending[i] for i in sorted(pending)]
            for call in calls:
                yield StreamEvent(event={
                    "type": "content_block_stop",
                    "content_block": {"type": "tool_use", "id": call.id},
                })

            arguments = [call.parsed_arguments() for call in calls]
            blocks: list[Any] = [TextBlock(text=text)] if text else []
            blocks.extend(
                ToolUseBlock(id=call.id, name=call.name, input=args)
                for call, args in zip(calls, arguments)
            )
            yield AssistantMessage(content=blocks)

            if not calls or rounds_used >= self._settings.max_tool_rounds:
                break

            # Feed the tool round back so the model sees what happened
            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments or "{}"},
                    }
                    for call in calls
                ],
            })

            results: list[ToolResultBlock] = []
            for call, args in zip(calls, arguments):
                if token is not None and token.cancelled:
                    return
                content, result_text, is_error = await self._run_tool(routes, call, args)
                results.append(ToolResultBlock(tool_use_id=call.id, content=content, is_error=is_error))
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result_text})
            yield ToolResultMessage(content=results)

            rounds_used += 1

        yield ResultMessage(
            subtype="success",
            is_error=False,
            result=text,
            total_cost_usd=total_cost,
            usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
            num_turns=rounds_used + 1,
        )
