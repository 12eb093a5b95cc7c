"""
Knowledge base loader.

Resolves a plugin's knowledge source to text. A source is either a plain
file path or a KnowledgeSource descriptor:

    KnowledgeSource(type="file", source="knowledge/notes.md")
    KnowledgeSource(type="string", source="Opening hours: 9-5")
    KnowledgeSource(type="function", source=fetch_notes)   # sync or async

Loading never raises. A missing file or a failing callback is logged as a
warning and yields empty text, so the agent still answers without it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable, Literal, Union

import aiofiles
from pydantic import BaseModel

from answerengine.agent.hooks import maybe_await
from answerengine.config.logging import get_logger

logger = get_logger(__name__)

KnowledgeCallable = Callable[[], Union[str, Awaitable[str]]]


class KnowledgeSource(BaseModel):
    """Tagged knowledge source descriptor."""

    type: Literal["file", "string", "function"]
    source: Union[str, KnowledgeCallable]


async def _read_file(path: str) -> str:
    resolved = Path(path).resolve()
    async with aiofiles.open(resolved, "r", encoding="utf-8") as f:
        text = await f.read()
    logger.info(f"Loaded knowledge file: {resolved.name} ({len(text)} characters)")
    return text


async def load_knowledge(source: str | KnowledgeSource | None) -> str:
    """
    Load knowledge text from a file path, string, or function.

    Args:
        source: File path, KnowledgeSource descriptor, or None

    Returns:
        The knowledge text, or "" if there is none or loading failed
    """
    if not source:
        return ""

    if isinstance(source, str):
        try:
            return await _read_file(source)
        except Exception as e:
            logger.warning(f"Failed to load knowledge from {source}: {e}")
            return ""

    if not isinstance(source, KnowledgeSource):
        return ""

    if source.type == "file":
        if not isinstance(source.source, str):
            return ""
        try:
            return await _read_file(source.source)
        except Exception as e:
            logger.warning(f"Failed to load knowledge file {source.source}: {e}")
            return ""

    if source.type == "string":
        return source.source if isinstance(source.source, str) else ""

    if source.type == "function":
        if not callable(source.source):
            return ""
        try:
            result = await maybe_await(source.source())
        except Exception as e:
            logger.warning(f"Failed to load knowledge from function: {e}")
            return ""
        return result if isinstance(result, str) else ""

    return ""


def format_knowledge_for_prompt(knowledge: str, label: str = "Knowledge Base") -> str:
    """
    Format knowledge for appending to a system prompt.

    Returns "" for blank knowledge so nothing (not even an empty heading)
    is added to the prompt.
    """
    if not knowledge or not knowledge.strip():
        return ""
    return f"\n\n{label}:\n{knowledge.strip()}\n"
