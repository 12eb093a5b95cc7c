"""
HTTP Server Layer.

Exposes an AgentEngine over HTTP: one request-triggers-stream endpoint
(server-sent events) and a liveness check.
"""

from answerengine.server.app import create_app, normalize_base_path
from answerengine.server.relay import StreamRelay

__all__ = ["StreamRelay", "create_app", "normalize_base_path"]
