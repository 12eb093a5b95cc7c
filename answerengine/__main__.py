"""
answerengine CLI entry point.

Commands:
    ask QUESTION   answer one question, streaming the reply to stdout
    serve          run the HTTP/SSE server
    config         show the current configuration
"""

import argparse
import asyncio
import sys
from pathlib import Path

from answerengine import __version__
from answerengine.config.logging import get_logger, setup_logging
from answerengine.config.settings import Settings, load_settings


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="answerengine",
        description="Conversational answer service for a domain plugin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"answerengine {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    parser.add_argument(
        "--plugin",
        default=None,
        help="Plugin to load as 'module:attribute' (default: PLUGIN from config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ask_parser = subparsers.add_parser(
        "ask",
        help="Ask one question and stream the answer",
    )
    ask_parser.add_argument(
        "question",
        nargs="*",
        help="Question to ask; read from stdin when omitted",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP server with SSE streaming",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: SERVER__PORT from config)",
    )
    serve_parser.add_argument(
        "--base-path",
        default=None,
        help="Base path prefix for routes (default: SERVER__BASE_PATH from config)",
    )

    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    return parser


def _build_engine(settings: Settings):
    from answerengine.agent.engine import AgentEngine
    from answerengine.llm.provider import LiteLLMProvider
    from answerengine.plugin import load_plugin

    plugin = load_plugin(settings.plugin)
    return AgentEngine(plugin, provider=LiteLLMProvider(settings.llm))


def _read_question(args) -> str:
    question = " ".join(args.question).strip()
    if question:
        return question
    try:
        return input("Your question: ").strip()
    except EOFError:
        return ""


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== answerengine Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"Plugin: {settings.plugin}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"LLM Max Tool Rounds: {settings.llm.max_tool_rounds}")
    logger.info(f"\nServer: {settings.server.host}:{settings.server.port}")
    logger.info(f"Server Base Path: {settings.server.base_path}")
    logger.info(f"Server Max History: {settings.server.max_history}")
    logger.info(f"Server Request Limit: {settings.server.request_limit} bytes")

    return 0


async def cmd_ask(args, settings: Settings) -> int:
    """Answer one question, streaming text to stdout."""
    from answerengine.agent.models import AgentError
    from answerengine.tools.base import running_tool_servers

    logger = get_logger(__name__)

    question = _read_question(args)
    if not question:
        print("No question provided. Exiting.", file=sys.stderr)
        return 1

    try:
        engine = _build_engine(settings)
    except Exception as e:
        print(f"Error loading plugin {settings.plugin!r}: {e}", file=sys.stderr)
        return 1

    def write_chunk(chunk: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    try:
        async with running_tool_servers(engine.plugin.tool_servers):
            result = await engine.run(prompt=question, metadata={"source": "cli"}, on_text_chunk=write_chunk)
    except AgentError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Query failed: {e}", exc_info=True)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    # The streamed text predates after_response; print whatever the hook added
    if not result.streamed:
        sys.stdout.write(result.response)
    if result.response and not result.response.endswith("\n"):
        sys.stdout.write("\n")

    if result.usage:
        logger.info(
            f"Tokens: {result.usage.total_tokens} "
            f"(input {result.usage.input_tokens} + output {result.usage.output_tokens})"
        )
    return 0


def cmd_serve(args, settings: Settings) -> int:
    """Start the HTTP server."""
    import uvicorn

    from answerengine.server.app import create_app, normalize_base_path

    logger = get_logger(__name__)

    server_settings = settings.server
    updates = {}
    if args.port is not None:
        updates["port"] = args.port
    if args.base_path is not None:
        updates["base_path"] = args.base_path
    if updates:
        server_settings = server_settings.model_copy(update=updates)

    if not settings.llm.api_key:
        logger.warning(
            "LLM API key not set (LLM__API_KEY). "
            "The server will start but queries will fail until this is configured."
        )

    try:
        engine = _build_engine(settings)
    except Exception as e:
        logger.error(f"Failed to load plugin {settings.plugin!r}: {e}")
        return 1

    app = create_app(engine, server_settings)
    base_path = normalize_base_path(server_settings.base_path)
    suffix = "/" if base_path == "/" else f"{base_path}/"
    logger.info(f"Agent server running at http://localhost:{server_settings.port}{suffix}")

    # log_config=None: keep our logging setup instead of uvicorn's
    uvicorn.run(app, host=server_settings.host, port=server_settings.port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        settings.log_level = args.log_level
    if args.plugin:
        settings.plugin = args.plugin

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    elif args.command == "serve":
        return cmd_serve(args, settings)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
