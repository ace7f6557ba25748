"""Chat-completion provider interface shared by every LLM backend.

Usage:
    class MyProvider(ChatProvider):
        name = "mine"

        async def complete(self, model, system_prompt, user_prompt) -> str:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from mailsense.core.errors import ErrorKind

# Substring sniffing for errors whose type carries no status code.
# Order matters: quota wins over auth when both appear.
_QUOTA_MARKERS = ("429", "quota", "rate_limit")
_AUTH_MARKERS = ("401", "invalid_api_key", "Unauthorized")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_CONNECTION_MARKERS = ("connection", "network")


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Everything needed to reach one provider.

    Attributes:
        provider: Provider name ('openai', 'deepseek', 'openrouter', 'google',
            'anthropic', 'ollama', 'demo')
        api_key: Credential, None for keyless providers
        default_model: Model pinned by the user; always wins over routing
        api_endpoint: Base URL override (required only for self-hosted servers)
    """

    provider: str
    api_key: str | None = None
    default_model: str | None = None
    api_endpoint: str | None = None


def sniff_error_kind(text: str) -> ErrorKind:
    """Categorize an error from its message text alone."""
    if any(marker in text for marker in _QUOTA_MARKERS):
        return ErrorKind.QUOTA_EXCEEDED
    if any(marker in text for marker in _AUTH_MARKERS):
        return ErrorKind.AUTH_FAILED
    lowered = text.lower()
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in lowered for marker in _CONNECTION_MARKERS):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def kind_for_status(status_code: int, body: str = "") -> ErrorKind:
    """Categorize a non-2xx HTTP response."""
    if status_code == 401:
        return ErrorKind.AUTH_FAILED
    if status_code == 429:
        return ErrorKind.QUOTA_EXCEEDED
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    sniffed = sniff_error_kind(body)
    return sniffed if sniffed is not ErrorKind.UNKNOWN else ErrorKind.NETWORK


class ChatProvider(ABC):
    """One LLM backend capable of a single system+user chat completion.

    Implementations raise ProviderError for every failure, including a
    successful response with no content (ErrorKind.EMPTY_RESPONSE).
    """

    name: str = "base"

    @abstractmethod
    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        """Return the assistant's text for a two-message conversation."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""
        return None
