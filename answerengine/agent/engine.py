"""
AgentEngine - query orchestration.

Takes one user prompt plus conversation history, drives a single streamed
model invocation, and returns an AgentResult:

    prompt, history
          ↓
    sanitize_history → before_query hook (reject → QueryRejectedError)
          ↓
    build_prompt_with_history → ProviderRequest
          ↓
    ModelProvider.query()  → EventNormalizer → on_event callback
          ↓
    log_interaction (always, exactly once)
          ↓
    after_response hook → should_escalate hook → AgentResult

Per query the engine moves through idle → initializing → invoking →
draining → finalizing → done | failed. Initialization (knowledge and system
prompt) happens once per engine and is shared by all queries; everything
else (cancellation token, normalizer, buffers) belongs to a single call.

Callback contract for ``stream(on_event=...)``: StartEvent is always first,
and exactly one DoneEvent or ErrorEvent is always last. Once the query is
cancelled no further non-terminal events are delivered.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable

from answerengine.agent.cancellation import CancellationToken
from answerengine.agent.events import (
    AssistantTextEvent,
    ClientEvent,
    DoneEvent,
    ErrorEvent,
    EventNormalizer,
    StartEvent,
)
from answerengine.agent.history import Turn, build_prompt_with_history, sanitize_history
from answerengine.agent.hooks import HookPipeline, PluginContext, Rejected, Replaced, maybe_await
from answerengine.agent.interaction_log import InteractionLogEntry, log_interaction
from answerengine.agent.models import (
    AgentExecutionError,
    AgentResult,
    QueryRejectedError,
)
from answerengine.config.logging import get_logger
from answerengine.config.settings import LLMSettings
from answerengine.knowledge.loader import format_knowledge_for_prompt, load_knowledge
from answerengine.llm.models import ProviderRequest
from answerengine.llm.provider import LiteLLMProvider, ModelProvider
from answerengine.plugin import DEFAULT_TOOL_SERVER_VERSION, DomainPlugin
from answerengine.tools.base import ToolAdapter
from answerengine.tools.registry import create_tool_server

logger = get_logger(__name__)

EventCallback = Callable[[ClientEvent], Any]
TextChunkCallback = Callable[[str], Any]


class QueryState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    INVOKING = "invoking"
    DRAINING = "draining"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class _Cancelled(Exception):
    """Internal signal: the token fired while waiting for the next event."""


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class _EventSink:
    """
    Delivers client events for one query.

    Guarantees the start/terminal bracket and drops non-terminal events
    after cancellation.
    """

    def __init__(self, callback: EventCallback | None, token: CancellationToken):
        self._callback = callback
        self._token = token
        self._started = False
        self._finished = False

    async def _deliver(self, event: ClientEvent) -> None:
        if self._callback is not None:
            await maybe_await(self._callback(event))

    async def start(self) -> None:
        if not self._started:
            self._started = True
            await self._deliver(StartEvent())

    async def emit(self, event: ClientEvent) -> None:
        if self._finished or self._token.cancelled:
            return
        await self._deliver(event)

    async def finish(self, event: DoneEvent | ErrorEvent) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            await self._deliver(event)
        except Exception as e:
            logger.warning(f"Event callback failed on terminal event: {e}")


async def _next_event(events: AsyncIterator[Any], token: CancellationToken) -> Any:
    """
    Await the next provider event, or raise _Cancelled as soon as the token fires.

    Raises StopAsyncIteration when the provider stream ends.
    """
    if token.cancelled:
        raise _Cancelled()

    next_task = asyncio.ensure_future(events.__anext__())
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        # Let the pending step unwind before the caller closes the generator
        next_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
            await next_task
        raise
    finally:
        cancel_task.cancel()

    if next_task.done():
        return next_task.result()

    next_task.cancel()
    try:
        await next_task
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    raise _Cancelled()


class AgentEngine:
    """
    Query orchestration engine for one domain plugin.

    Safe to share between concurrent queries: the memoized system prompt is
    computed at most once under a lock, and all per-query state lives in
    the call.

    Args:
        plugin: The domain plugin to serve
        provider: Model provider; defaults to LiteLLMProvider with LLMSettings()
    """

    def __init__(self, plugin: DomainPlugin, provider: ModelProvider | None = None):
        self._plugin = plugin
        self._provider = provider or LiteLLMProvider(LLMSettings())
        self._hooks = HookPipeline(
            before_query=plugin.before_query,
            after_response=plugin.after_response,
            should_escalate=plugin.should_escalate,
        )
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._system_prompt = ""
        self._knowledge = ""

    @property
    def plugin(self) -> DomainPlugin:
        return self._plugin

    async def _initialize(self) -> str:
        """Load knowledge and resolve the system prompt, once per engine."""
        if self._initialized:
            return self._system_prompt

        async with self._init_lock:
            if self._initialized:
                return self._system_prompt

            knowledge = await load_knowledge(self._plugin.knowledge_base)

            if callable(self._plugin.system_prompt):
                system_prompt = await maybe_await(self._plugin.system_prompt())
            else:
                system_prompt = self._plugin.system_prompt
            system_prompt = (system_prompt or "") + format_knowledge_for_prompt(knowledge)

            # Publish both values together, then flip the flag
            self._knowledge = knowledge
            self._system_prompt = system_prompt
            self._initialized = True
            logger.info(
                f"Plugin '{self._plugin.name}' initialized "
                f"(system prompt {len(system_prompt)} chars, knowledge {len(knowledge)} chars)"
            )
            return system_prompt

    def _tool_servers(self) -> dict[str, ToolAdapter]:
        servers: dict[str, ToolAdapter] = {}
        if self._plugin.tools:
            servers[self._plugin.tool_server_name] = create_tool_server(
                name=self._plugin.tool_server_name,
                version=self._plugin.version or DEFAULT_TOOL_SERVER_VERSION,
                tools=self._plugin.tools,
            )
        servers.update(self._plugin.tool_servers)
        return servers

    def _entry_metadata(self, metadata: dict[str, Any] | None) -> dict[str, Any] | None:
        if metadata is None and self._plugin.metadata is None:
            return None
        return {**(self._plugin.metadata or {}), **(metadata or {})}

    async def stream(
        self,
        prompt: str,
        history: Iterable[Any] | None = None,
        metadata: dict[str, Any] | None = None,
        on_event: EventCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentResult:
        """
        Answer one prompt, reporting normalized events as they arrive.

        Args:
            prompt: The user's question
            history: Prior turns; sanitized and bounded by the plugin's history config
            metadata: Per-call metadata for hooks and the interaction log
            on_event: Callback (sync or async) receiving each ClientEvent
            cancellation: Token to abort the query; a new one is created if omitted

        Returns:
            AgentResult. A cancelled query returns whatever text had arrived,
            with ``cancelled=True``.

        Raises:
            QueryRejectedError: The before_query hook rejected the prompt
            AgentExecutionError: The provider reported an execution error
            Exception: Anything raised while reading provider events, after logging
            asyncio.CancelledError: The calling task was cancelled; the partial
                response is logged as a cancellation, not an error
        """
        token = cancellation or CancellationToken()
        sink = _EventSink(on_event, token)
        normalizer = EventNormalizer()
        state = QueryState.IDLE

        await sink.start()

        effective_prompt = prompt.strip()
        sanitized: list[Turn] = []
        captured_error: BaseException | None = None
        cancelled = False
        interrupted = False

        try:
            state = QueryState.INITIALIZING
            system_prompt = await self._initialize()

            state = QueryState.INVOKING
            if self._plugin.history.enabled:
                sanitized = sanitize_history(history, self._plugin.history.max_turns)

            decision = await self._hooks.before(
                effective_prompt,
                PluginContext(prompt=effective_prompt, history=sanitized, metadata=metadata),
            )
            if isinstance(decision, Rejected):
                raise QueryRejectedError(decision.reason)
            effective_prompt = decision.prompt

            request = ProviderRequest(
                prompt=build_prompt_with_history(
                    sanitized, effective_prompt, max_turns=max(len(sanitized), 1)
                ),
                system_prompt=system_prompt,
                allowed_tools=self._plugin.resolve_allowed_tools(),
                tool_servers=self._tool_servers(),
                cancellation=token,
            )

            state = QueryState.DRAINING
            events = self._provider.query(request)
            try:
                while True:
                    try:
                        provider_event = await _next_event(events, token)
                    except StopAsyncIteration:
                        break
                    for client_event in normalizer.normalize(provider_event):
                        await sink.emit(client_event)
            except _Cancelled:
                cancelled = True
                logger.info(f"Query cancelled after {len(normalizer.response)} response chars")
            finally:
                aclose = getattr(events, "aclose", None)
                if aclose is not None:
                    await aclose()

            state = QueryState.FINALIZING
            if normalizer.is_error:
                raise AgentExecutionError()
        except asyncio.CancelledError:
            # The caller's task was cancelled: a cancellation, not a failure
            interrupted = True
            logger.info(f"Query task cancelled after {len(normalizer.response)} response chars")
            raise
        except BaseException as e:
            captured_error = e
            state = QueryState.FAILED
            raise
        finally:
            if self._plugin.logging.enabled:
                entry = InteractionLogEntry(
                    user_prompt=effective_prompt,
                    assistant_response=normalizer.response,
                    success=captured_error is None and not normalizer.is_error,
                    metadata=self._entry_metadata(metadata),
                    history=sanitized or None,
                    error=_describe(captured_error) if captured_error is not None else None,
                )
                await log_interaction(entry, self._plugin.logging)

            if captured_error is not None:
                await sink.finish(ErrorEvent(message=_describe(captured_error)))
            elif interrupted:
                await sink.finish(DoneEvent(response=normalizer.response))

        state = QueryState.DONE
        logger.debug(f"Query finished in state {state.value}")

        # Hooks run even if the caller has gone away; their side effects still matter
        final_response = normalizer.response
        context = PluginContext(prompt=effective_prompt, history=sanitized, metadata=metadata)
        try:
            outcome = await self._hooks.after(final_response, context)
            if isinstance(outcome, Replaced):
                final_response = outcome.response

            escalated = await self._hooks.escalate(context, final_response)
        except BaseException as e:
            await sink.finish(ErrorEvent(message=_describe(e)))
            raise

        if escalated:
            logger.warning(f"Query escalation triggered for prompt: {effective_prompt[:80]!r}")

        await sink.finish(DoneEvent(response=final_response))

        return AgentResult(
            response=final_response,
            streamed=normalizer.streamed,
            cost=normalizer.cost,
            usage=normalizer.usage,
            cancelled=cancelled,
            escalated=escalated,
        )

    async def run(
        self,
        prompt: str,
        history: Iterable[Any] | None = None,
        metadata: dict[str, Any] | None = None,
        on_text_chunk: TextChunkCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentResult:
        """
        Answer one prompt, passing response text to ``on_text_chunk``.

        Streamed deltas are forwarded as they arrive. If the provider does not
        stream, the first complete text block is forwarded instead.
        """
        emitted_text = False

        async def forward(event: ClientEvent) -> None:
            nonlocal emitted_text
            if on_text_chunk is None or not isinstance(event, AssistantTextEvent):
                return
            if event.mode == "delta" or not emitted_text:
                emitted_text = True
                await maybe_await(on_text_chunk(event.text))

        result = await self.stream(
            prompt,
            history=history,
            metadata=metadata,
            on_event=forward,
            cancellation=cancellation,
        )
        if emitted_text and not result.streamed:
            return result.model_copy(update={"streamed": True})
        return result
