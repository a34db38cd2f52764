"""LLM provider implementations.

Currently supported providers:
- OpenAI (gpt-4o-mini, gpt-4o, etc.)
- Anthropic (claude-sonnet-4-5, claude-3-5-haiku, etc.)

Usage:
    from docflow.llm.providers import create_provider

    provider = create_provider(provider_type="openai", api_key="sk-xxx")
    response = provider.complete(
        system_prompt="You are an expert...",
        user_prompt="Classify these messages...",
        json_schema={"type": "object"},
    )
"""

import logging
from typing import Literal

from docflow.llm.providers.base import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

ProviderType = Literal["openai", "anthropic"]


def create_provider(
    provider_type: ProviderType,
    api_key: str,
    model: str | None = None,
    timeout: float = 120.0,
) -> LLMProvider:
    """Factory function to create LLM providers.

    Args:
        provider_type: The provider to use ("openai" or "anthropic")
        api_key: API key for the provider
        model: Optional model override (uses provider default if not specified)
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance

    Raises:
        ValueError: If provider_type is unknown or api_key is missing
    """
    if not api_key:
        raise ValueError(f"API key is required for {provider_type} provider")

    if provider_type == "openai":
        from docflow.llm.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(api_key=api_key, model=model or "gpt-4o-mini", timeout=timeout)

    elif provider_type == "anthropic":
        from docflow.llm.providers.anthropic_provider import AnthropicProvider

        return AnthropicProvider(
            api_key=api_key,
            model=model or "claude-sonnet-4-5-20250514",
            timeout=timeout,
        )

    else:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported providers: openai, anthropic"
        )


def create_provider_from_settings() -> LLMProvider:
    """Create the provider selected in settings."""
    from docflow.config import settings

    if settings.llm_provider == "anthropic":
        return create_provider(
            "anthropic",
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout=settings.llm_timeout_seconds,
        )
    return create_provider(
        "openai",
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.llm_timeout_seconds,
    )


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderType",
    "create_provider",
    "create_provider_from_settings",
]
