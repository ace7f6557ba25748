"""Anthropic Messages API provider."""

from __future__ import annotations

import anthropic

from mailsense.core.errors import ErrorKind, ProviderError
from mailsense.core.logging import get_logger
from mailsense.providers.base import ChatProvider, kind_for_status, sniff_error_kind

logger = get_logger(__name__)

# The Messages API requires an explicit output cap
MAX_OUTPUT_TOKENS = 4096


class AnthropicProvider(ChatProvider):
    """Claude models through the anthropic SDK's async client."""

    name = "anthropic"

    def __init__(self, api_key: str, client: anthropic.AsyncAnthropic | None = None):
        self._owns_client = client is None
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=MAX_OUTPUT_TOKENS,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ProviderError(
                f"anthropic request timed out: {e}", kind=ErrorKind.TIMEOUT, provider=self.name
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(
                f"anthropic connection failed: {e}", kind=ErrorKind.NETWORK, provider=self.name
            ) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"anthropic request failed: {e}",
                kind=kind_for_status(e.status_code, str(e)),
                provider=self.name,
                status_code=e.status_code,
            ) from e
        except anthropic.APIError as e:
            raise ProviderError(
                f"anthropic request failed: {e}", kind=sniff_error_kind(str(e)), provider=self.name
            ) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise ProviderError(
                "No content received from anthropic",
                kind=ErrorKind.EMPTY_RESPONSE,
                provider=self.name,
            )

        logger.debug(
            "anthropic_response",
            model=model,
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
