"""
StreamRelay - bridges one AgentEngine.stream() call to server-sent events.

Frame contract for one request:
- ``start`` is sent before any work begins.
- exactly one ``done`` or ``error`` ends the stream.
- once the client disconnects, the query's cancellation token fires and
  nothing more is written (no terminal event either).

The orchestration runs as its own task. After a disconnect that task is left
to finish in the background, so the interaction log entry and the
after_response / should_escalate hooks still run.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable

from answerengine.agent.cancellation import CancellationToken
from answerengine.agent.engine import AgentEngine
from answerengine.agent.events import ClientEvent, DoneEvent, ErrorEvent, StartEvent
from answerengine.agent.history import Turn
from answerengine.agent.models import AgentError
from answerengine.config.logging import get_logger

logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Agent request failed"

# Strong references to orchestrations still finishing after their client left
_background_tasks: set[asyncio.Task] = set()


class StreamRelay:
    """
    Relays one query's events as SSE frames.

    Args:
        engine: The engine answering the query
        prompt: Validated, non-empty prompt
        history: Sanitized history turns
        metadata: Per-request metadata for hooks and the interaction log
        is_disconnected: Async check for client disconnect (e.g. Request.is_disconnected)
        poll_interval: Seconds between disconnect checks while no events arrive
    """

    def __init__(
        self,
        engine: AgentEngine,
        prompt: str,
        history: list[Turn] | None = None,
        metadata: dict[str, Any] | None = None,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        poll_interval: float = 0.5,
    ):
        self._engine = engine
        self._prompt = prompt
        self._history = history or []
        self._metadata = metadata
        self._is_disconnected = is_disconnected
        self._poll_interval = poll_interval

        self.token = CancellationToken()
        self.task: asyncio.Task | None = None
        self._queue: asyncio.Queue[ClientEvent | None] = asyncio.Queue()
        self._client_closed = False
        self._stream_finished = False

    @property
    def client_closed(self) -> bool:
        return self._client_closed

    def _on_event(self, event: ClientEvent) -> None:
        # The relay sends its own start and terminal frames
        if self._client_closed or isinstance(event, (StartEvent, DoneEvent, ErrorEvent)):
            return
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        terminal: ClientEvent
        try:
            result = await self._engine.stream(
                self._prompt,
                history=self._history,
                metadata=self._metadata,
                on_event=self._on_event,
                cancellation=self.token,
            )
            terminal = DoneEvent(response=result.response)
        except AgentError as e:
            logger.warning(f"Agent request failed: {e}")
            terminal = ErrorEvent(message=str(e))
        except Exception as e:
            logger.error(f"Agent request failed: {e}", exc_info=True)
            terminal = ErrorEvent(message=GENERIC_ERROR_MESSAGE)

        self._queue.put_nowait(terminal)
        self._queue.put_nowait(None)

    async def _check_disconnected(self) -> bool:
        if self._client_closed:
            return True
        if self._is_disconnected is not None and await self._is_disconnected():
            self.handle_disconnect()
        return self._client_closed

    def handle_disconnect(self) -> None:
        """Mark the client gone and cancel the query, unless it already finished."""
        if self._stream_finished or self._client_closed:
            return
        self._client_closed = True
        logger.info("Client disconnected, cancelling query")
        self.token.cancel()

    async def events(self) -> AsyncIterator[str]:
        """Yield SSE frames until the terminal event or a disconnect."""
        yield StartEvent().to_sse()

        self.task = asyncio.create_task(self._run())
        _background_tasks.add(self.task)
        self.task.add_done_callback(_background_tasks.discard)

        try:
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    if await self._check_disconnected():
                        return
                    continue

                if item is None or await self._check_disconnected():
                    return

                if isinstance(item, (DoneEvent, ErrorEvent)):
                    self._stream_finished = True
                    yield item.to_sse()
                    return

                yield item.to_sse()
        finally:
            # Generator closed early: the server dropped the connection
            self.handle_disconnect()
