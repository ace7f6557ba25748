"""Offline provider returning deterministic canned text."""

from __future__ import annotations

from mailsense.analysis.demo import build_demo_analysis
from mailsense.providers.base import ChatProvider


class DemoProvider(ChatProvider):
    """Never touches the network.

    Used for explicit demo configuration and as the gateway's catch-all
    when the provider name is not recognized.
    """

    name = "demo"

    def __init__(self, text: str | None = None):
        self._text = text

    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        return self._text if self._text is not None else build_demo_analysis()
