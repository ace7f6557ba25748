"""Tests for the analysis orchestrator.

Runs the full pipeline against a real temp-file store, with the provider
replaced by in-process fakes registered on the gateway.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import make_message
from mailsense.analysis.demo import build_demo_analysis
from mailsense.analysis.links import LinkContextFetcher
from mailsense.config_schema import AppConfig, LinkContextConfig
from mailsense.core.errors import DatabaseError, ErrorKind, MessageNotFoundError, ProviderError, QueueClosedError
from mailsense.db.store import DatabaseStore, Message, ProviderSettings, utcnow
from mailsense.engine.orchestrator import NO_PROVIDER_MESSAGE, AnalysisOrchestrator
from mailsense.providers.base import ChatProvider
from mailsense.providers.gateway import ProviderGateway


class FakeProvider(ChatProvider):
    """Returns canned text, or raises a preset error."""

    name = "fake"

    def __init__(self, text: str | None = None, error: Exception | None = None):
        self.text = text if text is not None else build_demo_analysis("Subject", "Sender")
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def complete(self, model: str, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((model, system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.text


def _gateway(provider: ChatProvider) -> ProviderGateway:
    gateway = ProviderGateway()
    gateway.register("openai", lambda cfg: provider)
    return gateway


async def _activate_openai(store: DatabaseStore, model: str | None = None) -> None:
    await store.save_provider_settings(
        ProviderSettings(provider="openai", api_key="sk-test", model=model, is_active=True)
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def orchestrator(
    store: DatabaseStore, sample_config: AppConfig, fake_provider: FakeProvider
) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(store, sample_config, gateway=_gateway(fake_provider))


class TestDemoMode:
    """Tests for runs with demo mode on."""

    @pytest.mark.asyncio
    async def test_persists_entities_without_provider_call(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        await store.set_setting("DemoMode", "true")

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "completed"
        assert fake_provider.calls == []
        assert len(await store.get_obligations(message_id=saved_message.id)) == 2
        assert len(await store.get_deadlines(message_id=saved_message.id)) == 2
        assert len(await store.get_contacts()) == 1
        assert len(await store.get_events(message_id=saved_message.id)) == 1
        assert len(await store.get_attachments(saved_message.id)) == 2
        assert len(await store.get_tasks()) == 2

    @pytest.mark.asyncio
    async def test_demo_runs_are_not_logged_as_usage(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        await store.set_setting("DemoMode", "true")
        await orchestrator.run_analysis(saved_message.id)

        assert await store.get_usage_logs() == []

    @pytest.mark.asyncio
    async def test_rerun_deduplicates_entities(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        """Test that contacts, events, and attachments are not duplicated."""
        await store.set_setting("DemoMode", "true")
        await orchestrator.run_analysis(saved_message.id)
        await orchestrator.run_analysis(saved_message.id)

        assert len(await store.get_contacts()) == 1
        assert len(await store.get_events(message_id=saved_message.id)) == 1
        assert len(await store.get_attachments(saved_message.id)) == 2

    @pytest.mark.asyncio
    async def test_updates_message_tags(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        await store.set_setting("DemoMode", "true")
        await orchestrator.run_analysis(saved_message.id)

        message = await store.get_message(saved_message.id)
        assert message is not None
        assert message.importance == "high"
        assert message.life_domain == "Professional"


class TestProviderRuns:
    """Tests for runs against a configured provider."""

    @pytest.mark.asyncio
    async def test_completed_analysis(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        await _activate_openai(store)

        analysis = await orchestrator.run_analysis(saved_message.id, instructions="Ignore the footer")

        assert analysis is not None
        assert analysis.status == "completed"
        # Short body -> Simple -> gemini-1.5-flash, remapped into OpenAI's budget tier
        assert analysis.model_used == "gpt-4o-mini"
        assert analysis.complexity == "Simple"
        assert analysis.cost_usd > 0
        assert analysis.summary is not None
        assert analysis.instructions == "Ignore the footer"

        model, system_prompt, user_prompt = fake_provider.calls[0]
        assert model == "gpt-4o-mini"
        assert "Ignore the footer" in system_prompt
        assert user_prompt.startswith("Email Subject: Policy renewal notice")

        (usage,) = await store.get_usage_logs()
        assert usage.analysis_id == analysis.id
        assert usage.task_type == "ComplexAnalysis"

    @pytest.mark.asyncio
    async def test_pinned_model_is_used(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        await _activate_openai(store, model="gpt-4-turbo")
        await orchestrator.run_analysis(saved_message.id)

        assert fake_provider.calls[0][0] == "gpt-4-turbo"

    @pytest.mark.asyncio
    async def test_premium_budget(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        await _activate_openai(store)
        await store.set_setting("AiBudgetMode", "Premium")

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None and analysis.model_used == "gpt-4o"

    @pytest.mark.asyncio
    async def test_auto_tasks_can_be_disabled(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        await _activate_openai(store)
        await store.set_setting("AutoTaskCreation", "false")

        await orchestrator.run_analysis(saved_message.id)

        assert len(await store.get_obligations(message_id=saved_message.id)) == 2
        assert await store.get_tasks() == []

    @pytest.mark.asyncio
    async def test_prose_response_still_completes(
        self,
        store: DatabaseStore,
        saved_message: Message,
        sample_config: AppConfig,
    ) -> None:
        await _activate_openai(store)
        orchestrator = AnalysisOrchestrator(
            store, sample_config, gateway=_gateway(FakeProvider(text="Sorry, no JSON today."))
        )

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "completed"
        assert analysis.general_analysis == "Sorry, no JSON today."
        assert await store.get_obligations(message_id=saved_message.id) == []


class TestFailures:
    """Tests for failure handling and the error payload."""

    @pytest.mark.asyncio
    async def test_provider_error_writes_payload(
        self, store: DatabaseStore, saved_message: Message, sample_config: AppConfig
    ) -> None:
        await _activate_openai(store)
        error = ProviderError("Incorrect API key", kind=ErrorKind.AUTH_FAILED, provider="openai")
        orchestrator = AnalysisOrchestrator(
            store, sample_config, gateway=_gateway(FakeProvider(error=error))
        )

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "failed"
        payload = json.loads(analysis.raw_response)
        assert payload["errorType"] == "auth_failed"
        assert payload["provider"] == "openai"
        assert payload["model"] == "gpt-4o-mini"
        assert "API key" in payload["suggestion"]
        assert "timestamp" in payload
        assert await store.get_obligations(message_id=saved_message.id) == []

    @pytest.mark.asyncio
    async def test_no_provider_configured(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "failed"
        payload = json.loads(analysis.raw_response)
        assert payload["error"] == NO_PROVIDER_MESSAGE
        assert payload["errorType"] == "unknown"
        assert payload["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_environment_key_fallback(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that OPENAI_API_KEY serves when nothing is stored, without remapping."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None and analysis.status == "completed"
        assert fake_provider.calls[0][0] == "gemini-1.5-flash"

    @pytest.mark.asyncio
    async def test_unexpected_exception_marks_failed(
        self, store: DatabaseStore, saved_message: Message, sample_config: AppConfig
    ) -> None:
        await _activate_openai(store)
        orchestrator = AnalysisOrchestrator(
            store, sample_config, gateway=_gateway(FakeProvider(error=RuntimeError("boom")))
        )

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "failed"
        assert analysis.raw_response == "Error: boom"
        stored = await store.get_analysis(analysis.id)
        assert stored is not None and stored.status == "failed"

    @pytest.mark.asyncio
    async def test_missing_message_returns_none(self, orchestrator: AnalysisOrchestrator) -> None:
        assert await orchestrator.run_analysis(9999) is None

    @pytest.mark.asyncio
    async def test_malformed_link_does_not_fail_analysis(
        self, store: DatabaseStore, sample_config: AppConfig, fake_provider: FakeProvider
    ) -> None:
        message_id = await store.save_message(
            make_message(body="Terms at https://example.com:abc/terms apply from June.")
        )
        await _activate_openai(store)
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        orchestrator = AnalysisOrchestrator(
            store,
            sample_config,
            gateway=_gateway(fake_provider),
            link_fetcher=LinkContextFetcher(LinkContextConfig(), client=client),
        )

        analysis = await orchestrator.run_analysis(message_id)

        assert analysis is not None
        assert analysis.status == "completed"
        assert len(fake_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_lone_surrogate_in_response_is_stored(
        self, store: DatabaseStore, saved_message: Message, sample_config: AppConfig
    ) -> None:
        """Test that text SQLite cannot encode still reaches a terminal state."""
        await _activate_openai(store)
        for raw in ('{"summary": {"text": "bad \\ud83d"}}', '{"summary": {"text": "bad \ud83d"}}'):
            orchestrator = AnalysisOrchestrator(
                store, sample_config, gateway=_gateway(FakeProvider(text=raw))
            )

            analysis = await orchestrator.run_analysis(saved_message.id)

            stored = await store.get_analysis(analysis.id)
            assert stored.status == "completed"
            assert stored.summary == '{"text":"bad ?"}'

    @pytest.mark.asyncio
    async def test_rejected_save_still_marks_failed(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that a row the store refuses to save falls back to a status-only update."""
        await store.set_setting("DemoMode", "true")
        monkeypatch.setattr(store, "save_analysis", AsyncMock(side_effect=DatabaseError("disk full")))

        analysis = await orchestrator.run_analysis(saved_message.id)

        assert analysis is not None
        assert analysis.status == "failed"
        assert analysis.summary is None
        stored = await store.get_analysis(analysis.id)
        assert stored.status == "failed"
        assert stored.raw_response == "Error: disk full"
        assert stored.summary is None


class TestStaleReaping:
    """Tests for the stuck-analysis reaper."""

    @pytest.mark.asyncio
    async def test_stuck_analysis_for_other_message_is_reaped(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        other_id = await store.save_message(make_message(source_id="msg-002"))
        stuck = await store.create_analysis(other_id, analyzed_at=utcnow() - timedelta(minutes=10))
        await store.set_setting("DemoMode", "true")

        await orchestrator.run_analysis(saved_message.id)

        reaped = await store.get_analysis(stuck.id)
        assert reaped is not None
        assert reaped.status == "failed"
        payload = json.loads(reaped.raw_response)
        assert payload["errorType"] == "timeout"
        assert payload["error"] == "Analysis timed out or service restarted"

    @pytest.mark.asyncio
    async def test_current_attempt_not_reaped(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        """Test that an old placeholder being run right now is left to complete."""
        placeholder = await store.create_analysis(
            saved_message.id, analyzed_at=utcnow() - timedelta(minutes=10)
        )
        await store.set_setting("DemoMode", "true")

        analysis = await orchestrator.run_analysis(saved_message.id, placeholder.id)

        assert analysis is not None
        assert analysis.id == placeholder.id
        assert analysis.status == "completed"

    @pytest.mark.asyncio
    async def test_terminal_attempt_is_not_rerun(
        self,
        store: DatabaseStore,
        saved_message: Message,
        orchestrator: AnalysisOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        """Test that a failed attempt never flips to completed."""
        placeholder = await store.create_analysis(saved_message.id)
        placeholder.status = "failed"
        placeholder.raw_response = "Error: earlier failure"
        await store.save_analysis(placeholder)
        await store.set_setting("DemoMode", "true")

        analysis = await orchestrator.run_analysis(saved_message.id, placeholder.id)

        assert analysis is not None
        assert analysis.status == "failed"
        stored = await store.get_analysis(placeholder.id)
        assert stored.status == "failed"
        assert stored.raw_response == "Error: earlier failure"
        assert await store.get_obligations(message_id=saved_message.id) == []

    @pytest.mark.asyncio
    async def test_queued_placeholder_survives_other_runs(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        """Test that a job waiting behind a backlog is not reaped before it runs."""
        from mailsense.engine.worker import AnalysisQueue

        await store.set_setting("DemoMode", "true")
        queue = AnalysisQueue(orchestrator, concurrency=1)
        orchestrator.attach_queue(queue)
        await queue.start()

        first = await store.create_analysis(saved_message.id)
        waiting = await store.create_analysis(
            saved_message.id, analyzed_at=utcnow() - timedelta(minutes=10)
        )
        await queue.submit(saved_message.id, first.id)
        await queue.submit(saved_message.id, waiting.id)
        await queue.join()
        await queue.shutdown()

        assert (await store.get_analysis(first.id)).status == "completed"
        stored = await store.get_analysis(waiting.id)
        assert stored.status == "completed"
        assert queue.held_analysis_ids == frozenset()


class TestStartAnalysis:
    """Tests for queued analysis submission."""

    @pytest.mark.asyncio
    async def test_requires_queue(
        self, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        with pytest.raises(QueueClosedError):
            await orchestrator.start_analysis(saved_message.id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, orchestrator: AnalysisOrchestrator) -> None:
        from mailsense.engine.worker import AnalysisQueue

        orchestrator.attach_queue(AnalysisQueue(orchestrator))
        with pytest.raises(MessageNotFoundError):
            await orchestrator.start_analysis(9999)

    @pytest.mark.asyncio
    async def test_closed_queue_fails_placeholder(
        self, store: DatabaseStore, saved_message: Message, orchestrator: AnalysisOrchestrator
    ) -> None:
        """Test that a rejected submit leaves no placeholder stuck in processing."""
        from mailsense.engine.worker import AnalysisQueue

        orchestrator.attach_queue(AnalysisQueue(orchestrator))  # never started

        with pytest.raises(QueueClosedError):
            await orchestrator.start_analysis(saved_message.id)

        (analysis,) = await store.get_analyses_for_message(saved_message.id)
        assert analysis.status == "failed"
        assert analysis.raw_response.startswith("Error:")
