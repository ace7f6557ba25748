"""Provider gateway: one chat-completion entry point over every LLM backend.

The gateway owns three decisions:

1. Which ChatProvider implementation serves a provider name (factory
   registry, with a deterministic demo catch-all for unknown names).
2. Whether the provider's configuration is usable at all (API key present
   for providers that need one).
3. Which concrete model to send, when the router recommended a model from a
   different vendor's namespace (remap_model).

Usage:
    from mailsense.providers import ProviderConfig, ProviderGateway

    gateway = ProviderGateway()
    text = await gateway.complete_chat(
        ProviderConfig(provider="deepseek", api_key="sk-..."),
        "deepseek-chat",
        system_prompt,
        user_prompt,
    )
"""

from __future__ import annotations

from collections.abc import Callable

from mailsense.config_schema import ProvidersConfig
from mailsense.core.errors import ErrorKind, ProviderError
from mailsense.core.logging import get_logger
from mailsense.providers.anthropic_provider import AnthropicProvider
from mailsense.providers.base import ChatProvider, ProviderConfig
from mailsense.providers.demo import DemoProvider
from mailsense.providers.ollama import OllamaProvider
from mailsense.providers.openai_compat import BASE_URLS, OpenAICompatibleProvider

logger = get_logger(__name__)

ProviderFactory = Callable[[ProviderConfig], ChatProvider]

# Providers that run without credentials
KEYLESS_PROVIDERS = frozenset({"ollama", "demo"})

# Recommended-model substrings that mark each vendor's namespace
_NATIVE_MARKERS = {
    "openai": "gpt",
    "google": "gemini",
    "anthropic": "claude",
    "deepseek": "deepseek",
}
_BUDGET_MARKERS = ("mini", "flash", "haiku")


def remap_model(recommended: str, provider: str, default_model: str | None = None) -> str:
    """Translate a routed model name into the active provider's namespace.

    A model pinned by the user always wins. A recommendation already in the
    provider's namespace is kept. Otherwise the recommendation's tier
    (budget if it names a mini/flash/haiku model, premium otherwise) picks
    the provider's equivalent.
    """
    if default_model:
        return default_model

    provider = provider.lower()
    marker = _NATIVE_MARKERS.get(provider)
    if marker and marker in recommended:
        return recommended

    is_budget = any(m in recommended for m in _BUDGET_MARKERS)

    if provider == "openai":
        return "gpt-4o-mini" if is_budget else "gpt-4o"
    if provider == "deepseek":
        return "deepseek-chat"
    if provider == "google":
        return "gemini-2.0-flash" if is_budget else "gemini-1.5-pro"
    if provider == "anthropic":
        return "claude-3-haiku-20240307" if is_budget else "claude-3-7-sonnet-20250219"
    if provider == "ollama":
        return "llama3"
    # openrouter accepts every vendor's names; unknown providers pass through
    return recommended


class ProviderGateway:
    """Routes chat completions to the right backend.

    Attributes:
        _settings: Transport settings (timeouts, default endpoints)
        _factories: Provider name -> factory building a ChatProvider
    """

    def __init__(self, settings: ProvidersConfig | None = None):
        self._settings = settings or ProvidersConfig()
        self._factories: dict[str, ProviderFactory] = {
            name: self._openai_compatible_factory(name) for name in BASE_URLS
        }
        self._factories["anthropic"] = lambda cfg: AnthropicProvider(api_key=cfg.api_key or "")
        self._factories["ollama"] = lambda cfg: OllamaProvider(
            base_url=cfg.api_endpoint or self._settings.ollama_default_endpoint,
            timeout=self._settings.ollama_timeout_seconds,
        )
        self._factories["demo"] = lambda cfg: DemoProvider()

    def _openai_compatible_factory(self, name: str) -> ProviderFactory:
        def factory(cfg: ProviderConfig) -> ChatProvider:
            return OpenAICompatibleProvider(
                name=name,
                api_key=cfg.api_key or "",
                base_url=cfg.api_endpoint or BASE_URLS[name],
            )

        return factory

    def register(self, provider: str, factory: ProviderFactory) -> None:
        """Add or replace the factory for a provider name."""
        self._factories[provider.lower()] = factory

    @property
    def supported_providers(self) -> list[str]:
        return sorted(self._factories)

    def create_provider(self, config: ProviderConfig) -> ChatProvider:
        """Build the provider for a config, falling back to the demo catch-all."""
        factory = self._factories.get(config.provider.lower())
        if factory is None:
            logger.warning("provider_unrecognized_using_demo", provider=config.provider)
            return DemoProvider()
        return factory(config)

    def ensure_usable(self, config: ProviderConfig) -> None:
        """Raise CONFIG_MISSING if the provider needs a key and has none."""
        name = config.provider.lower()
        if name in KEYLESS_PROVIDERS or name not in self._factories:
            return
        if not config.api_key or not config.api_key.strip():
            raise ProviderError(
                f"No API key configured for provider '{config.provider}'. "
                "Go to Settings and add a key, or activate a different provider.",
                kind=ErrorKind.CONFIG_MISSING,
                provider=config.provider,
            )

    async def complete_chat(
        self,
        config: ProviderConfig,
        model: str,
        system_prompt: str,
        user_prompt: str,
    ) -> str:
        """Run one system+user completion and return the response text.

        Raises:
            ProviderError: For missing configuration, transport, auth, quota,
                and empty-content failures (see ErrorKind)
        """
        self.ensure_usable(config)
        provider = self.create_provider(config)

        logger.info("provider_call_started", provider=provider.name, model=model)
        try:
            text = await provider.complete(model, system_prompt, user_prompt)
        except ProviderError as e:
            logger.warning(
                "provider_call_failed",
                provider=provider.name,
                model=model,
                kind=e.kind.value,
                status_code=e.status_code,
                error=str(e),
            )
            raise
        finally:
            await provider.aclose()

        if not text or not text.strip():
            raise ProviderError(
                f"No content received from {provider.name}",
                kind=ErrorKind.EMPTY_RESPONSE,
                provider=provider.name,
            )

        logger.info("provider_call_completed", provider=provider.name, model=model, chars=len(text))
        return text
