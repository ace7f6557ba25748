"""Tests for link context fetching."""

import asyncio
from collections.abc import AsyncIterator

import httpx
import pytest

from mailsense.analysis.links import CONTEXT_HEADER, LinkContextFetcher
from mailsense.config_schema import LinkContextConfig

BODY = (
    "Your new policy is ready: https://insurer.example.com/policy/123 "
    "Unsubscribe at https://insurer.example.com/unsubscribe "
    "Terms: https://insurer.example.com/terms.html "
    "Statement: https://bank.example.com/statement "
    "Again: https://insurer.example.com/policy/123"
)


def _fetcher(handler, **overrides) -> LinkContextFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LinkContextFetcher(LinkContextConfig(**overrides), client=client)


class TestFindCandidateUrls:
    """Tests for URL selection."""

    def test_keyword_filter_order_and_limit(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig())
        assert fetcher.find_candidate_urls(BODY) == [
            "https://insurer.example.com/policy/123",
            "https://insurer.example.com/terms.html",
        ]

    def test_duplicates_counted_once(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig(max_links=10))
        urls = fetcher.find_candidate_urls(BODY)
        assert len(urls) == len(set(urls)) == 3

    def test_keywords_case_insensitive(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig())
        assert fetcher.find_candidate_urls("see https://x.example.com/POLICY.pdf") == [
            "https://x.example.com/POLICY.pdf"
        ]


class TestCleanContent:
    def test_strips_tags_and_whitespace(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig())
        html = "<html><body><h1>Terms</h1>\n\n<p>Coverage   applies</p></body></html>"
        assert fetcher.clean_content(html) == "Terms Coverage applies"

    def test_truncates(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig(max_chars=100))
        cleaned = fetcher.clean_content("x" * 150)
        assert cleaned == "x" * 100 + "..."

    def test_decodes_html_entities(self) -> None:
        fetcher = LinkContextFetcher(LinkContextConfig())
        html = "<p>Terms &amp; Conditions&nbsp;apply &lt;today&gt;</p>"
        assert fetcher.clean_content(html) == "Terms & Conditions apply <today>"


class TestFetch:
    """Tests for fetch()."""

    @pytest.mark.asyncio
    async def test_builds_context_block(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, text="<p>Policy wording</p>"))

        context = await fetcher.fetch(BODY)

        assert context.startswith(CONTEXT_HEADER)
        assert "RESOURCE: https://insurer.example.com/policy/123\nCONTENT SNIPPET: Policy wording\n" in context
        assert context.count("RESOURCE:") == 2

    @pytest.mark.asyncio
    async def test_failed_links_are_skipped(self) -> None:
        """Test that a failing link does not stop the others."""

        def handler(request: httpx.Request) -> httpx.Response:
            if "policy" in str(request.url):
                raise httpx.ConnectError("refused", request=request)
            if "terms" in str(request.url):
                return httpx.Response(500)
            return httpx.Response(200, text="ok")

        context = await _fetcher(handler).fetch(BODY)

        assert context == CONTEXT_HEADER

    @pytest.mark.asyncio
    async def test_disabled_returns_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await _fetcher(handler, enabled=False).fetch(BODY) == ""

    @pytest.mark.asyncio
    async def test_no_matching_links(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await _fetcher(handler).fetch("Visit https://example.com/home") == ""
        assert await _fetcher(handler).fetch(None) == ""

    @pytest.mark.asyncio
    async def test_sends_user_agent(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["User-Agent"])
            return httpx.Response(200, text="ok")

        await _fetcher(handler, user_agent="TestAgent/1.0").fetch(BODY)

        assert seen == ["TestAgent/1.0", "TestAgent/1.0"]

    @pytest.mark.asyncio
    async def test_malformed_url_is_skipped(self) -> None:
        """Test that a URL httpx cannot parse is logged and skipped."""
        body = "Terms at https://example.com:abc/terms and policy at https://insurer.example.com/policy"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="Policy wording")

        context = await _fetcher(handler).fetch(body)

        assert "RESOURCE: https://example.com:abc/terms" not in context
        assert "RESOURCE: https://insurer.example.com/policy\nCONTENT SNIPPET: Policy wording\n" in context

    @pytest.mark.asyncio
    async def test_download_is_capped(self) -> None:
        """Test that an endless body is read only up to the byte cap."""
        chunks_sent = 0

        async def endless() -> AsyncIterator[bytes]:
            nonlocal chunks_sent
            while True:
                chunks_sent += 1
                yield b"x" * 1024

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=endless())

        fetcher = _fetcher(handler, max_chars=100, max_links=1)
        context = await fetcher.fetch("https://files.example.com/download/big.bin")

        assert "CONTENT SNIPPET: " + "x" * 100 + "..." in context
        assert chunks_sent * 1024 <= fetcher.max_bytes + 1024

    @pytest.mark.asyncio
    async def test_slow_body_hits_overall_timeout(self) -> None:
        """Test that a server trickling bytes cannot outlast the per-link timeout."""

        async def trickle() -> AsyncIterator[bytes]:
            while True:
                await asyncio.sleep(0.05)
                yield b"x"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=trickle())

        fetcher = _fetcher(handler, timeout_seconds=0.3, max_links=1)

        context = await asyncio.wait_for(
            fetcher.fetch("https://slow.example.com/statement"), timeout=5
        )

        assert context == CONTEXT_HEADER
