"""Link context augmentation.

Scans an email body for URLs that look like documents worth reading
(policies, statements, terms), fetches a few of them, and turns the
readable text into a context block appended to the analysis prompt.

All regex operations use the `regex` library with a timeout, since the
input is untrusted email content.

Usage:
    from mailsense.analysis.links import LinkContextFetcher

    fetcher = LinkContextFetcher(config.link_context)
    context = await fetcher.fetch(message.body_plain)
"""

from __future__ import annotations

import asyncio
import html

import httpx
import regex

from mailsense.config_schema import LinkContextConfig
from mailsense.core.logging import get_logger

logger = get_logger(__name__)

REGEX_TIMEOUT = 1.0

URL_PATTERN = regex.compile(r"https?://[^\s\"<>]+")
TAG_PATTERN = regex.compile(r"<.*?>")
WHITESPACE_PATTERN = regex.compile(r"\s+")

CONTEXT_HEADER = "\n\n--- EXTERNAL RESOURCE CONTEXT ---\n"

# Raw bytes read per link, as a multiple of max_chars; markup is stripped after
BYTES_PER_CHAR = 16


class LinkContextFetcher:
    """Fetches keyword-matching links from an email body.

    Attributes:
        config: Link context settings (keywords, limits, timeout)
    """

    def __init__(self, config: LinkContextConfig | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or LinkContextConfig()
        self._client = client

    @property
    def max_bytes(self) -> int:
        return self.config.max_chars * BYTES_PER_CHAR

    def find_candidate_urls(self, body: str) -> list[str]:
        """Distinct URLs, in order of appearance, containing a keyword."""
        try:
            found = URL_PATTERN.findall(body, timeout=REGEX_TIMEOUT)
        except TimeoutError:
            logger.warning("link_scan_timeout", body_length=len(body))
            return []

        keywords = [k.lower() for k in self.config.keywords]
        candidates: list[str] = []
        for url in dict.fromkeys(found):
            lowered = url.lower()
            if any(k in lowered for k in keywords):
                candidates.append(url)
            if len(candidates) >= self.config.max_links:
                break
        return candidates

    def clean_content(self, content: str) -> str:
        """Strip markup, decode entities, collapse whitespace, and cap the length."""
        try:
            text = TAG_PATTERN.sub(" ", content, timeout=REGEX_TIMEOUT)
            text = html.unescape(text)
            text = WHITESPACE_PATTERN.sub(" ", text, timeout=REGEX_TIMEOUT).strip()
        except TimeoutError:
            logger.warning("link_clean_timeout", content_length=len(content))
            text = html.unescape(content).strip()

        if len(text) > self.config.max_chars:
            text = text[: self.config.max_chars] + "..."
        return text

    async def fetch(self, body: str | None) -> str:
        """Build the external resource context block for a body.

        A link that fails for any transport reason is logged and skipped.

        Returns:
            The context block, or "" when disabled or nothing matched
        """
        if not self.config.enabled or not body:
            return ""

        urls = self.find_candidate_urls(body)
        if not urls:
            return ""

        logger.info("link_context_fetch_started", url_count=len(urls))
        sections = [CONTEXT_HEADER]

        client = self._client or httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent},
            follow_redirects=True,
        )
        try:
            for url in urls:
                content = await self._fetch_one(client, url)
                if content is not None:
                    sections.append(f"\nRESOURCE: {url}\nCONTENT SNIPPET: {self.clean_content(content)}\n")
        finally:
            if self._client is None:
                await client.aclose()

        return "".join(sections)

    async def _fetch_one(self, client: httpx.AsyncClient, url: str) -> str | None:
        """Download at most max_bytes of one link within the overall timeout."""
        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                async with client.stream(
                    "GET",
                    url,
                    headers={"User-Agent": self.config.user_agent},
                    timeout=self.config.timeout_seconds,
                ) as response:
                    if not response.is_success:
                        logger.debug("link_fetch_skipped", url=url, status_code=response.status_code)
                        return None
                    data = await self._read_capped(response)
                    encoding = response.encoding or "utf-8"
        except TimeoutError:
            logger.warning("link_fetch_timeout", url=url, timeout_seconds=self.config.timeout_seconds)
            return None
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("link_fetch_failed", url=url, error=str(e))
            return None

        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            return data.decode("utf-8", errors="replace")

    async def _read_capped(self, response: httpx.Response) -> bytes:
        limit = self.max_bytes
        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) >= limit:
                logger.debug("link_body_truncated", url=str(response.url), max_bytes=limit)
                break
        return bytes(buffer[:limit])
