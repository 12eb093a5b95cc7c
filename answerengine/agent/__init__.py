"""
Agent Orchestration Layer.

Turns one user prompt plus conversation history into a single streamed
model invocation, and reports it as normalized client events:

    history → sanitize_history ─┐
    prompt  → before_query hook ┴→ AgentEngine.stream() → ModelProvider
                                            ↓
                                   EventNormalizer → on_event
                                            ↓
                     log_interaction → after_response → should_escalate
                                            ↓
                                        AgentResult
"""

from answerengine.agent.cancellation import CancellationToken
from answerengine.agent.engine import AgentEngine
from answerengine.agent.history import Turn, build_prompt_with_history, sanitize_history
from answerengine.agent.interaction_log import InteractionLogEntry, LogConfig, log_interaction
from answerengine.agent.models import (
    AgentError,
    AgentExecutionError,
    AgentResult,
    QueryRejectedError,
    TokenUsage,
)

__all__ = [
    "AgentEngine",
    "AgentError",
    "AgentExecutionError",
    "AgentResult",
    "CancellationToken",
    "InteractionLogEntry",
    "LogConfig",
    "QueryRejectedError",
    "TokenUsage",
    "Turn",
    "build_prompt_with_history",
    "log_interaction",
    "sanitize_history",
]
