"""
FastAPI application serving an AgentEngine over HTTP with SSE streaming.

Routes:
    POST /api/query               (and {base_path}/api/query when base_path != "/")
        body: {"prompt": str, "history": [{"role", "content"}, ...]}
        → text/event-stream of start, assistant-text, tool-use, tool-result,
          result, done | error
        → 400 {"error": "Prompt is required"} for a missing/blank prompt
        → 413 {"error": ...} when the body exceeds ServerSettings.request_limit
    GET  /health
        → {"status": "ok"}
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from answerengine import __version__
from answerengine.agent.engine import AgentEngine
from answerengine.agent.history import sanitize_history
from answerengine.config.logging import get_logger
from answerengine.config.settings import ServerSettings
from answerengine.server.relay import StreamRelay
from answerengine.tools.base import running_tool_servers

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def normalize_base_path(value: str | None) -> str:
    """Return ``value`` as "/" or "/segment[/segment...]" with no trailing slash."""
    if not value:
        return "/"
    value = value.strip()
    if not value:
        return "/"
    if not value.startswith("/"):
        value = f"/{value}"
    if len(value) > 1 and value.endswith("/"):
        value = value[:-1]
    return value


def api_prefixes(base_path: str) -> list[str]:
    if base_path == "/":
        return ["/api"]
    return ["/api", f"{base_path}/api"]


def create_app(engine: AgentEngine, settings: ServerSettings | None = None) -> FastAPI:
    """
    Build the FastAPI app for ``engine``.

    External tool servers registered on the plugin are started on app
    startup and shut down on app shutdown.
    """
    settings = settings or ServerSettings()
    base_path = normalize_base_path(settings.base_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with running_tool_servers(engine.plugin.tool_servers):
            yield

    app = FastAPI(title=f"{engine.plugin.name} answer engine", version=__version__, lifespan=lifespan)
    app.state.base_path = base_path

    async def query(request: Request):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > settings.request_limit:
            return JSONResponse(status_code=413, content={"error": "Request body too large"})

        body = await request.body()
        if len(body) > settings.request_limit:
            return JSONResponse(status_code=413, content={"error": "Request body too large"})

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        prompt = payload.get("prompt")
        prompt_text = prompt.strip() if isinstance(prompt, str) else ""
        if not prompt_text:
            return JSONResponse(status_code=400, content={"error": "Prompt is required"})

        history = sanitize_history(payload.get("history"), settings.max_history)
        logger.info(f"Received streaming request for prompt: {prompt_text[:80]!r}")

        relay = StreamRelay(
            engine,
            prompt_text,
            history=history,
            metadata={"source": "web", **settings.metadata},
            is_disconnected=request.is_disconnected,
        )
        return StreamingResponse(relay.events(), media_type="text/event-stream", headers=SSE_HEADERS)

    for prefix in api_prefixes(base_path):
        app.add_api_route(f"{prefix}/query", query, methods=["POST"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
