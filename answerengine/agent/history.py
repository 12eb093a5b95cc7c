"""
Conversation history window.

History arrives from untrusted callers (HTTP bodies, CLI sessions), so
sanitising never raises: malformed entries are dropped, not coerced.
"""

from __future__ import annotations

from typing import Any, Iterable, Literal

from pydantic import BaseModel, ConfigDict

DEFAULT_MAX_TURNS = 20

_ROLES = ("user", "assistant")


class Turn(BaseModel):
    """A single user or assistant utterance."""

    role: Literal["user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)


def _coerce_turn(entry: Any) -> Turn | None:
    if isinstance(entry, Turn):
        role, raw_content = entry.role, entry.content
    elif isinstance(entry, dict):
        role, raw_content = entry.get("role"), entry.get("content")
    else:
        return None

    content = raw_content.strip() if isinstance(raw_content, str) else ""
    if role not in _ROLES or not content:
        return None
    return Turn(role=role, content=content)


def sanitize_history(
    history: Iterable[Any] | None,
    max_turns: int = DEFAULT_MAX_TURNS,
) -> list[Turn]:
    """
    Validate conversation history and keep only the most recent turns.

    Drops non-object entries, unknown roles and blank content, then keeps
    the last ``max_turns`` entries in their original order.

    Args:
        history: Raw history entries (dicts or Turn instances); anything else is ignored
        max_turns: Upper bound on the number of turns returned

    Returns:
        Sanitised list of Turn objects, possibly empty
    """
    if not history or isinstance(history, (str, bytes, dict)):
        return []

    try:
        entries = list(history)
    except TypeError:
        return []

    turns = [turn for turn in (_coerce_turn(entry) for entry in entries) if turn is not None]

    if max_turns <= 0:
        return []
    if len(turns) <= max_turns:
        return turns
    return turns[len(turns) - max_turns:]


def build_prompt_with_history(
    history: Iterable[Any] | None,
    next_prompt: str,
    max_turns: int = DEFAULT_MAX_TURNS,
) -> str:
    """
    Render history as a User/Agent transcript followed by the new user turn.

    Example:
        >>> build_prompt_with_history([{"role": "user", "content": "a"},
        ...                            {"role": "assistant", "content": "b"}], "c")
        'User: a\\n\\nAgent: b\\n\\nUser: c'
    """
    trimmed_prompt = next_prompt.strip()
    valid_history = sanitize_history(history, max_turns)

    if not valid_history:
        return trimmed_prompt

    transcript = "\n\n".join(
        f"{'Agent' if turn.role == 'assistant' else 'User'}: {turn.content}"
        for turn in valid_history
    )
    return f"{transcript}\n\nUser: {trimmed_prompt}"
