"""Provider name -> adapter factory."""

from typing import Optional

from promptlab.config import OLLAMA, OPENAI, ANTHROPIC, PROVIDERS
from promptlab.errors import ValidationError
from promptlab.models.base import ProviderAdapter
from promptlab.models.ollama_adapter import OllamaAdapter
from promptlab.models.openai_adapter import OpenAIAdapter
from promptlab.models.anthropic_adapter import AnthropicAdapter


def create_adapter(provider: str, timeout: Optional[float] = None) -> ProviderAdapter:
    """Create the adapter for a provider name."""
    if provider == OLLAMA:
        return OllamaAdapter(timeout=timeout)
    elif provider == OPENAI:
        return OpenAIAdapter(timeout=timeout)
    elif provider == ANTHROPIC:
        return AnthropicAdapter(timeout=timeout)
    else:
        raise ValidationError(f"Unknown provider: {provider}. Available: {PROVIDERS}")


async def list_models(provider: str) -> list[dict]:
    """Model catalog for a provider; live query for Ollama."""
    adapter = create_adapter(provider)
    try:
        return await adapter.list_models()
    finally:
        await adapter.close()
