"""OpenAI-compatible chat-completion provider.

Serves OpenAI itself plus every vendor exposing the same
/chat/completions API (DeepSeek, OpenRouter, Google's Gemini endpoint).
The vendors differ only in base URL and model namespace.
"""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from mailsense.core.errors import ErrorKind, ProviderError
from mailsense.core.logging import get_logger
from mailsense.providers.base import ChatProvider, kind_for_status, sniff_error_kind

logger = get_logger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GOOGLE_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

# None means the SDK default (api.openai.com)
BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "deepseek": DEEPSEEK_BASE_URL,
    "openrouter": OPENROUTER_BASE_URL,
    "google": GOOGLE_OPENAI_BASE_URL,
}


class OpenAICompatibleProvider(ChatProvider):
    """Chat completions through the official openai SDK.

    Automatic retries are disabled: a failed analysis is retried by the
    user, not behind their back.
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.name = name
        self._owns_client = client is None
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except openai.APIError as e:
            raise _to_provider_error(e, self.name) from e

        if not response.choices:
            raise ProviderError(
                f"No content received from {self.name}",
                kind=ErrorKind.EMPTY_RESPONSE,
                provider=self.name,
            )

        content = response.choices[0].message.content
        if not content:
            raise ProviderError(
                f"No content received from {self.name}",
                kind=ErrorKind.EMPTY_RESPONSE,
                provider=self.name,
            )

        logger.debug("openai_compatible_response", provider=self.name, model=model, chars=len(content))
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()


def _to_provider_error(error: openai.APIError, provider: str) -> ProviderError:
    """Map an openai SDK exception onto the provider error taxonomy."""
    message = f"{provider} request failed: {error}"

    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(error, openai.APITimeoutError):
        return ProviderError(message, kind=ErrorKind.TIMEOUT, provider=provider)
    if isinstance(error, openai.APIConnectionError):
        return ProviderError(message, kind=ErrorKind.NETWORK, provider=provider)
    if isinstance(error, openai.AuthenticationError):
        return ProviderError(message, kind=ErrorKind.AUTH_FAILED, provider=provider, status_code=401)
    if isinstance(error, openai.RateLimitError):
        return ProviderError(message, kind=ErrorKind.QUOTA_EXCEEDED, provider=provider, status_code=429)
    if isinstance(error, openai.APIStatusError):
        return ProviderError(
            message,
            kind=kind_for_status(error.status_code, str(error)),
            provider=provider,
            status_code=error.status_code,
        )
    return ProviderError(message, kind=sniff_error_kind(str(error)), provider=provider)
