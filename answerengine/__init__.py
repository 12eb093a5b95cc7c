"""
answerengine - turn a domain knowledge source and a set of tools into a
conversational answer service backed by a remote language model.

This package provides the query orchestration engine, the HTTP/SSE relay
that exposes it, and the plugin surface operators use to describe a domain.
"""

__version__ = "0.1.0"

from answerengine.agent import AgentEngine, AgentResult, CancellationToken
from answerengine.plugin import DomainPlugin, create_plugin
from answerengine.tools import tool

__all__ = [
    "AgentEngine",
    "AgentResult",
    "CancellationToken",
    "DomainPlugin",
    "create_plugin",
    "tool",
]
