"""
Provider events, client events, and the normalizer between them.

The model provider emits a heterogeneous stream:

    StreamEvent        live content-block events (text deltas, tool-use start/stop)
    AssistantMessage   a complete assistant turn (text and tool-use blocks)
    ToolResultMessage  results of tool calls made during the turn
    ResultMessage      exactly one terminal result (success/error, cost, usage)
    GenericEvent       anything else, kept for forward compatibility

EventNormalizer maps each of these onto the small closed set of events the
HTTP relay and other clients consume (``start``, ``assistant-text``,
``tool-use``, ``tool-result``, ``result``, ``done``, ``error``), and keeps the
running per-invocation state the engine needs once the stream ends.

Streaming deltas are for live display only. The authoritative response text
is taken from the last complete assistant message, so ``response`` is
overwritten by each AssistantMessage rather than built up from deltas.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from answerengine.agent.models import TokenUsage

# ---------------------------------------------------------------------------
# Provider events
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str | None = None
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = None
    content: Any = None
    is_error: bool = False


class OtherBlock(BaseModel):
    """A content block kind this package does not interpret (e.g. thinking)."""

    type: str

    model_config = ConfigDict(extra="allow")


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, OtherBlock]


class StreamEvent(BaseModel):
    """A raw content-block stream event, e.g. ``{"type": "content_block_delta", ...}``."""

    type: Literal["stream_event"] = "stream_event"
    event: dict[str, Any] = Field(default_factory=dict)


class AssistantMessage(BaseModel):
    type: Literal["assistant"] = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)


class ToolResultMessage(BaseModel):
    type: Literal["user"] = "user"
    content: list[ContentBlock] = Field(default_factory=list)


class ResultMessage(BaseModel):
    """Terminal event of one provider invocation."""

    type: Literal["result"] = "result"
    subtype: str = "success"
    is_error: bool = False
    result: str | None = None
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    num_turns: int | None = None
    errors: list[str] = Field(default_factory=list)


class GenericEvent(BaseModel):
    """Open variant: any event kind the normalizer has no rule for."""

    type: str

    model_config = ConfigDict(extra="allow")


ProviderEvent = Union[StreamEvent, AssistantMessage, ToolResultMessage, ResultMessage, GenericEvent]


# ---------------------------------------------------------------------------
# Client events
# ---------------------------------------------------------------------------


class ClientEvent(BaseModel):
    """Base for events sent across the system boundary."""

    name: ClassVar[str] = ""

    model_config = ConfigDict(populate_by_name=True)

    @property
    def event_name(self) -> str:
        return self.name

    def payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        """Render as one server-sent event frame."""
        data = json.dumps(self.payload(), default=str)
        return f"event: {self.event_name}\ndata: {data}\n\n"


class StartEvent(ClientEvent):
    name: ClassVar[str] = "start"


class AssistantTextEvent(ClientEvent):
    name: ClassVar[str] = "assistant-text"

    text: str
    mode: Literal["delta", "block"]


class ToolUseEvent(ClientEvent):
    name: ClassVar[str] = "tool-use"

    id: str | None = None
    tool_name: str | None = Field(default=None, serialization_alias="name")
    input: dict[str, Any] | None = None
    stage: Literal["start", "end"]

    def payload(self) -> dict[str, Any]:
        if self.stage == "end":
            return {"id": self.id, "stage": self.stage}
        return {"id": self.id, "name": self.tool_name, "input": self.input, "stage": self.stage}


class ToolResultEvent(ClientEvent):
    name: ClassVar[str] = "tool-result"

    id: str | None = None
    output: Any = None

    def payload(self) -> dict[str, Any]:
        return {"id": self.id, "output": self.output}


class ResultEvent(ClientEvent):
    name: ClassVar[str] = "result"

    is_error: bool = Field(serialization_alias="isError")
    cost: float | None = None
    usage: TokenUsage | None = None
    result: str | None = None


class DoneEvent(ClientEvent):
    name: ClassVar[str] = "done"

    response: str


class ErrorEvent(ClientEvent):
    name: ClassVar[str] = "error"

    message: str


class PassthroughEvent(ClientEvent):
    """An event forwarded under its own tag without interpretation."""

    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_name(self) -> str:
        return self.event_type

    def payload(self) -> dict[str, Any]:
        return self.data


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


def _usage_from(raw: dict[str, Any] | None) -> TokenUsage | None:
    if not raw:
        return None
    return TokenUsage(
        input_tokens=raw.get("input_tokens") or 0,
        output_tokens=raw.get("output_tokens") or 0,
    )


def _tool_block_from_stream(event: dict[str, Any]) -> dict[str, Any] | None:
    block = event.get("content_block") or event.get("block")
    if isinstance(block, dict) and block.get("type") == "tool_use":
        return block
    return None


class EventNormalizer:
    """
    Maps provider events onto client events for a single invocation.

    Create one instance per query: the set of announced tool-call ids and the
    accumulated response belong to that query alone.

    Attributes:
        response: Text of the most recent complete assistant message
        streamed: True once any non-empty text delta has been seen
        is_error: Error flag from the terminal result
        cost: Total cost in USD from the terminal result, if reported
        usage: Token usage from the terminal result, if reported
        result_received: True once the terminal result has been seen
    """

    def __init__(self) -> None:
        self._announced_tool_ids: set[str] = set()
        self.response = ""
        self.streamed = False
        self.is_error = False
        self.cost: float | None = None
        self.usage: TokenUsage | None = None
        self.result_received = False

    def _should_announce(self, tool_id: str | None) -> bool:
        # Calls without an id cannot be matched across paths, so always announce them
        if not tool_id:
            return True
        if tool_id in self._announced_tool_ids:
            return False
        self._announced_tool_ids.add(tool_id)
        return True

    def normalize(self, event: Any) -> list[ClientEvent]:
        """Return the client events for one provider event (possibly none)."""
        if isinstance(event, StreamEvent):
            return self._from_stream_event(event)
        if isinstance(event, AssistantMessage):
            return self._from_assistant_message(event)
        if isinstance(event, ToolResultMessage):
            return self._from_tool_results(event)
        if isinstance(event, ResultMessage):
            return self._from_result(event)
        return [self._passthrough(event)]

    def _from_stream_event(self, message: StreamEvent) -> list[ClientEvent]:
        event = message.event
        event_type = event.get("type")

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                text = delta.get("text") or ""
                if not text:
                    return []
                self.streamed = True
                return [AssistantTextEvent(text=text, mode="delta")]

        block = _tool_block_from_stream(event)
        if event_type == "content_block_start" and block is not None:
            if not self._should_announce(block.get("id")):
                return []
            return [
                ToolUseEvent(
                    id=block.get("id"),
                    tool_name=block.get("name"),
                    input=block.get("input"),
                    stage="start",
                )
            ]
        if event_type == "content_block_stop" and block is not None:
            return [ToolUseEvent(id=block.get("id"), stage="end")]

        return [PassthroughEvent(event_type="stream-event", data=event)]

    def _from_assistant_message(self, message: AssistantMessage) -> list[ClientEvent]:
        events: list[ClientEvent] = []
        texts: list[str] = []

        for block in message.content:
            if isinstance(block, TextBlock):
                if block.text:
                    texts.append(block.text)
                    events.append(AssistantTextEvent(text=block.text, mode="block"))
            elif isinstance(block, ToolUseBlock):
                if self._should_announce(block.id):
                    events.append(
                        ToolUseEvent(id=block.id, tool_name=block.name, input=block.input, stage="start")
                    )

        if texts:
            self.response = "".join(texts)
        return events

    def _from_tool_results(self, message: ToolResultMessage) -> list[ClientEvent]:
        return [
            ToolResultEvent(id=block.tool_use_id, output=block.content)
            for block in message.content
            if isinstance(block, ToolResultBlock)
        ]

    def _from_result(self, message: ResultMessage) -> list[ClientEvent]:
        self.result_received = True
        self.is_error = message.is_error
        self.cost = message.total_cost_usd
        self.usage = _usage_from(message.usage)

        return [
            ResultEvent(
                is_error=message.is_error,
                cost=self.cost,
                usage=self.usage,
                result=message.result if message.subtype == "success" else None,
            )
        ]

    def _passthrough(self, event: Any) -> PassthroughEvent:
        if isinstance(event, BaseModel):
            data = event.model_dump()
        elif isinstance(event, dict):
            data = dict(event)
        else:
            data = {"value": event}
        event_type = str(data.get("type") or getattr(event, "type", None) or "event")
        return PassthroughEvent(event_type=event_type, data=data)
