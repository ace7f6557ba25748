"""Local Ollama inference server provider.

Ollama's chat endpoint takes ``{model, messages, stream}`` and, with
streaming off, answers with a single ``{"message": {"content": ...}}``.
"""

from __future__ import annotations

from typing import Any

import httpx

from mailsense.core.errors import ErrorKind, ProviderError
from mailsense.core.logging import get_logger
from mailsense.providers.base import ChatProvider, kind_for_status

logger = get_logger(__name__)

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"
DEFAULT_OLLAMA_TIMEOUT = 60.0


class OllamaProvider(ChatProvider):
    """Chat completions against a local Ollama server over httpx."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_ENDPOINT,
        timeout: float = DEFAULT_OLLAMA_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": model,
            "stream": False,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        logger.debug("ollama_request", url=url, model=model)
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"Ollama request to {url} timed out", kind=ErrorKind.TIMEOUT, provider=self.name
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                f"Ollama returned HTTP {status}: {e.response.text[:200]}",
                kind=kind_for_status(status, e.response.text),
                provider=self.name,
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"Ollama connection to {url} failed: {e}", kind=ErrorKind.NETWORK, provider=self.name
            ) from e
        except ValueError as e:
            raise ProviderError(
                f"Ollama returned invalid JSON: {e}", kind=ErrorKind.UNKNOWN, provider=self.name
            ) from e

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            raise ProviderError(
                "Empty response from Ollama", kind=ErrorKind.EMPTY_RESPONSE, provider=self.name
            )
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
