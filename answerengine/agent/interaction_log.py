"""
Append-only interaction log.

One JSON line per orchestration attempt, written with aiofiles. Writing is
best-effort: a failed write is reported as a warning and never fails the
query that produced it.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ConfigDict, Field

from answerengine.agent.history import Turn
from answerengine.config.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LOG_PATH = "./logs/interactions.log"

# One lock per resolved log path so concurrent queries never interleave lines.
# Locks are bound to the loop that uses them, so they are keyed by loop and
# dropped with it. Within a loop there is one entry per configured log path.
_path_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[Path, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


class LogConfig(BaseModel):
    """Interaction logging configuration."""

    path: str = Field(default=DEFAULT_LOG_PATH, description="Destination JSON-lines file")
    enabled: bool = Field(default=True, description="Set False to disable all writes")
    metadata: dict[str, Any] | None = Field(
        default=None, description="Merged over each entry's metadata (config wins)"
    )


class InteractionLogEntry(BaseModel):
    """One durable record of a completed or failed orchestration."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    user_prompt: str = Field(serialization_alias="userPrompt")
    assistant_response: str = Field(serialization_alias="assistantResponse")
    success: bool
    metadata: dict[str, Any] | None = None
    history: list[Turn] | None = None
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


def _lock_for(path: Path) -> asyncio.Lock:
    locks = _path_locks.setdefault(asyncio.get_running_loop(), {})
    lock = locks.get(path)
    if lock is None:
        lock = locks[path] = asyncio.Lock()
    return lock


async def log_interaction(entry: InteractionLogEntry, config: LogConfig | None = None) -> None:
    """
    Append ``entry`` to the configured log file.

    No-op when ``config.enabled`` is False. ``config.metadata`` is merged over
    the entry's own metadata before writing. Errors are logged, not raised.
    """
    config = config or LogConfig()
    if not config.enabled:
        return

    log_path = Path(config.path).resolve()

    try:
        if config.metadata:
            entry = entry.model_copy(update={"metadata": {**(entry.metadata or {}), **config.metadata}})
        line = entry.model_dump_json(by_alias=True, exclude_none=True)

        async with _lock_for(log_path):
            await aiofiles.os.makedirs(log_path.parent, exist_ok=True)
            async with aiofiles.open(log_path, "a", encoding="utf-8") as f:
                await f.write(f"{line}\n")
    except Exception as e:
        logger.warning(f"Failed to write interaction log to {log_path}: {e}")
