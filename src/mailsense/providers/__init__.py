"""LLM provider backends and the gateway that routes between them.

Usage:
    from mailsense.providers import ProviderConfig, ProviderGateway, remap_model

    gateway = ProviderGateway()
    model = remap_model("gpt-4o-mini", "anthropic")  # claude-3-haiku-20240307
"""

from mailsense.providers.anthropic_provider import AnthropicProvider
from mailsense.providers.base import ChatProvider, ProviderConfig
from mailsense.providers.demo import DemoProvider
from mailsense.providers.gateway import ProviderGateway, remap_model
from mailsense.providers.ollama import OllamaProvider
from mailsense.providers.openai_compat import OpenAICompatibleProvider

__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "DemoProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderConfig",
    "ProviderGateway",
    "remap_model",
]
