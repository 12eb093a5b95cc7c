"""
Per-invocation cancellation token.

One token is created for each query. Callers (or the stream relay's
disconnect detection) trigger it; the engine and the provider observe it.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from answerengine.config.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """
    A one-way cancelled flag with an awaitable and callbacks.

    Cancelling is idempotent. Callbacks registered after cancellation run
    immediately.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self.cancelled:
            callback()
            return
        self._callbacks.append(callback)

    async def wait(self) -> None:
        await self._event.wait()
