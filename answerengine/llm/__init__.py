"""
LLM Provider Layer.

Wraps the remote language model behind ModelProvider. The default
LiteLLMProvider streams completions through LiteLLM (provider-agnostic),
runs tool-use rounds against the plugin's tool servers, and reports each
step as a provider event for the engine to normalize.
"""

from answerengine.llm.models import LLMError, ProviderRequest
from answerengine.llm.provider import LiteLLMProvider, ModelProvider

__all__ = [
    "LiteLLMProvider",
    "LLMError",
    "ModelProvider",
    "ProviderRequest",
]
