"""
answerengine settings.

Values come from the environment or a .env file. Nested sections use a
double underscore, e.g. LLM__MODEL=openai/gpt-4o or SERVER__PORT=8080.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Remote model used by LiteLLMProvider."""

    model: str = Field(
        default="anthropic/claude-3-5-sonnet-20241022",
        description="LiteLLM model string; the prefix (anthropic/, openai/, ollama/...) "
                    "selects the provider API",
    )
    max_tokens: int = Field(default=1024, description="Maximum tokens in response")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    max_tool_rounds: int = Field(
        default=5,
        ge=0,
        description="Safety limit on tool-use rounds within a single query",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=3000, description="Port to listen on")
    base_path: str = Field(
        default="/",
        description="Base path for routes (e.g. '/chat'). The query endpoint is "
                    "served under both /api and {base_path}/api.",
    )
    max_history: int = Field(
        default=20, ge=0, description="Maximum conversation history turns kept per request"
    )
    request_limit: int = Field(
        default=1024 * 1024, gt=0, description="Maximum request body size in bytes"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata attached to every web request's interaction log entry",
    )

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Plugin
    plugin: str = Field(
        default="answerengine.starter:plugin",
        description="Import path of the domain plugin to serve, as 'module:attribute'",
    )

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
