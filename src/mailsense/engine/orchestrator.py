"""Analysis orchestrator: the end-to-end email analysis use case.

Pipeline per run:
0. Return an attempt that is already completed or failed untouched;
   otherwise restart its stale window
1. Reap analyses stuck in 'processing' past the stale window, skipping
   those the attached queue still holds
2. Resolve the PipelineConfig once (provider, budget, demo, auto-tasks)
3. Classify complexity -> recommend model -> remap to the active provider
4. Demo mode: canned response, no provider call
   Otherwise: link context -> prompts -> provider call
5. Parse -> extract -> persist (with dedup) -> auto-tasks -> message tags
   -> usage log -> mark completed

Every run ends in 'completed' or 'failed'. Provider failures are written as
a structured JSON payload; anything else unexpected is written as
"Error: <message>". If the full row cannot be written the sections are
dropped and only the failure is recorded, so an attempt never stays in
'processing' while the database is reachable.

Concurrent runs for the same message are not locked against each other;
the stale-analysis reaper is the only guard. Entity dedup and the
one-task-per-obligation constraint keep such races from doubling rows.

Usage:
    from mailsense.engine.orchestrator import AnalysisOrchestrator

    orchestrator = AnalysisOrchestrator(store, config)
    queue = AnalysisQueue(orchestrator, concurrency=2, maxsize=100)
    orchestrator.attach_queue(queue)
    await queue.start()

    placeholder = await orchestrator.start_analysis(message_id)
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import timedelta
from typing import TYPE_CHECKING

from mailsense.analysis.auto_tasks import AutoTaskPipeline
from mailsense.analysis.demo import build_demo_analysis, estimate_tokens
from mailsense.analysis.extractors import (
    extract_attachments,
    extract_contacts,
    extract_deadlines,
    extract_events,
    extract_obligations,
)
from mailsense.analysis.links import LinkContextFetcher
from mailsense.analysis.parser import AnalysisResult, parse_analysis_response, storable_text
from mailsense.analysis.prompts import PromptBuilder
from mailsense.core.errors import (
    DatabaseError,
    ErrorKind,
    MessageNotFoundError,
    ProviderError,
    QueueClosedError,
)
from mailsense.core.logging import analysis_run, bind_analysis_id, get_logger
from mailsense.db.store import SECTION_COLUMNS, utcnow
from mailsense.engine.failures import STUCK_ANALYSIS_PAYLOAD, classify_failure
from mailsense.engine.pipeline_config import PipelineConfig, resolve_pipeline_config
from mailsense.engine.usage import UsageTracker
from mailsense.providers.gateway import ProviderGateway, remap_model
from mailsense.routing.classifier import TaskClassifier
from mailsense.routing.registry import TaskType, calculate_cost

if TYPE_CHECKING:
    from mailsense.config_schema import AppConfig
    from mailsense.db.store import AiAnalysis, DatabaseStore, Message
    from mailsense.engine.worker import AnalysisQueue

logger = get_logger(__name__)

NO_PROVIDER_MESSAGE = (
    "No active AI provider configured. Please go to Settings and activate a "
    "provider (OpenAI, DeepSeek, etc.) first."
)


class AnalysisOrchestrator:
    """Runs analyses and owns their lifecycle.

    Attributes:
        _store: DatabaseStore for messages, analyses, and entities
        _config: Application configuration
        _gateway: ProviderGateway for LLM calls
        _classifier: TaskClassifier for smart routing
        _prompts: PromptBuilder for the two analysis messages
        _links: LinkContextFetcher for linked-document context
        _usage: UsageTracker for cost records
        _queue: AnalysisQueue that executes runs started via start_analysis()
    """

    def __init__(
        self,
        store: DatabaseStore,
        config: AppConfig,
        gateway: ProviderGateway | None = None,
        classifier: TaskClassifier | None = None,
        prompt_builder: PromptBuilder | None = None,
        link_fetcher: LinkContextFetcher | None = None,
        usage_tracker: UsageTracker | None = None,
    ):
        self._store = store
        self._config = config
        self._gateway = gateway or ProviderGateway(config.providers)
        self._classifier = classifier or TaskClassifier()
        self._prompts = prompt_builder or PromptBuilder()
        self._links = link_fetcher or LinkContextFetcher(config.link_context)
        self._usage = usage_tracker or UsageTracker(store, config.analysis.baseline_model)
        self._queue: AnalysisQueue | None = None

    def attach_queue(self, queue: AnalysisQueue) -> None:
        self._queue = queue

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def start_analysis(self, message_id: int, instructions: str | None = None) -> AiAnalysis:
        """Create a 'processing' placeholder and queue the run.

        Returns as soon as the work is queued; callers poll the returned
        analysis ID for completion.

        Raises:
            MessageNotFoundError: If the message does not exist
            QueueClosedError: If no queue is attached or it is shutting down
        """
        if self._queue is None:
            raise QueueClosedError("No analysis queue attached to the orchestrator")

        message = await self._store.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)

        analysis = await self._store.create_analysis(message_id, instructions=instructions)
        try:
            await self._queue.submit(message_id, analysis.id, instructions)
        except QueueClosedError as e:
            analysis.status = "failed"
            analysis.raw_response = f"Error: {e}"
            await self._store.save_analysis(analysis)
            raise

        logger.info("analysis_queued", message_id=message_id, analysis_id=analysis.id)
        return analysis

    async def run_analysis(
        self,
        message_id: int,
        analysis_id: int | None = None,
        instructions: str | None = None,
    ) -> AiAnalysis | None:
        """Run the full pipeline for a message and persist the outcome.

        Args:
            message_id: Message to analyze
            analysis_id: Existing attempt to fill in (from start_analysis);
                a new attempt is created when None or not found
            instructions: User corrections to prioritize in the prompt

        Returns:
            The terminal analysis, or None if the message does not exist
        """
        with analysis_run(message_id, analysis_id):
            return await self._run(message_id, analysis_id, instructions)

    async def reap_stale(self, exclude_id: int | None = None) -> list[int]:
        """Fail every analysis left in 'processing' past the stale window.

        Analyses held by the attached queue are skipped: they are waiting
        their turn or running, not abandoned.
        """
        cutoff = utcnow() - timedelta(minutes=self._config.analysis.stale_analysis_minutes)
        excluded = set(self._queue.held_analysis_ids) if self._queue is not None else set()
        if exclude_id is not None:
            excluded.add(exclude_id)
        reaped = await self._store.fail_stale_analyses(
            cutoff, STUCK_ANALYSIS_PAYLOAD, exclude_ids=excluded
        )
        if reaped:
            logger.warning("stale_analyses_reaped", count=len(reaped), analysis_ids=reaped)
        return reaped

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _run(
        self,
        message_id: int,
        analysis_id: int | None,
        instructions: str | None,
    ) -> AiAnalysis | None:
        analysis = await self._store.get_analysis(analysis_id) if analysis_id is not None else None
        if analysis is not None and analysis.is_terminal:
            logger.warning("analysis_already_terminal", status=analysis.status)
            return analysis
        if analysis is not None:
            # The stale window runs from pickup, not from when the job was queued
            await self._store.touch_analysis(analysis.id)

        try:
            await self.reap_stale(exclude_id=analysis_id)
        except DatabaseError as e:
            logger.error("stale_analysis_reap_skipped", error=str(e))

        message = await self._store.get_message(message_id)

        if message is None:
            logger.warning("analysis_message_missing", message_id=message_id)
            if analysis is not None:
                await self._mark_failed(analysis, f"Error: {MessageNotFoundError(message_id)}")
            return None

        if analysis is None:
            analysis = await self._store.create_analysis(message_id, instructions=instructions)
            bind_analysis_id(analysis.id)
        if instructions is None:
            instructions = analysis.instructions
        else:
            analysis.instructions = instructions

        logger.info("analysis_started", subject=(message.subject or "")[:80])
        started = time.monotonic()

        try:
            await self._analyze(message, analysis, instructions, started)
        except Exception as e:
            logger.exception("analysis_failed_unhandled", error=str(e))
            await self._mark_failed(analysis, storable_text(f"Error: {e}"))

        return analysis

    async def _mark_failed(self, analysis: AiAnalysis, raw_response: str) -> None:
        """Move an analysis to 'failed', whatever its section data holds.

        If the full row is rejected, the sections are dropped and only the
        status and error are written.
        """
        analysis.status = "failed"
        analysis.raw_response = raw_response
        analysis.analyzed_at = utcnow()
        try:
            await self._store.save_analysis(analysis)
        except DatabaseError as e:
            logger.error("analysis_full_save_failed", error=str(e))
            for name in SECTION_COLUMNS:
                setattr(analysis, name, None)
            await self._store.mark_analysis_failed(analysis.id, raw_response)

    async def _analyze(
        self,
        message: Message,
        analysis: AiAnalysis,
        instructions: str | None,
        started: float,
    ) -> None:
        pipeline = await resolve_pipeline_config(self._store, self._config, task="analysis")

        body = message.body_plain or message.body_html or ""
        complexity = self._classifier.classify_complexity(body, instructions)
        model = self._classifier.recommend_model(complexity, pipeline.budget_mode)

        if pipeline.from_stored_settings and pipeline.provider is not None:
            routed = model
            model = remap_model(routed, pipeline.provider.provider, pipeline.provider.default_model)
            logger.info(
                "model_remapped",
                recommended=routed,
                model=model,
                provider=pipeline.provider.provider,
            )

        try:
            raw, input_tokens, output_tokens = await self._complete(
                message, pipeline, model, instructions
            )
        except ProviderError as e:
            failure = classify_failure(e)
            logger.error(
                "analysis_provider_failed",
                error_type=failure.error_type,
                provider=pipeline.provider_name,
                model=model,
                error=str(e),
            )
            analysis.model_used = model
            await self._mark_failed(
                analysis, storable_text(failure.to_payload(pipeline.provider_name, model))
            )
            return

        raw = storable_text(raw)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        result = parse_analysis_response(raw)

        for name, value in result.sections().items():
            setattr(analysis, name, value)
        analysis.model_used = model
        analysis.cost_usd = calculate_cost(model, input_tokens, output_tokens)
        analysis.complexity = complexity.value
        analysis.processing_time_ms = elapsed_ms
        analysis.raw_response = raw

        await self._persist_entities(message, result, pipeline)
        await self._update_message_tags(message, result)

        if not pipeline.demo_mode:
            await self._usage.log_usage(
                model,
                TaskType.COMPLEX_ANALYSIS,
                complexity,
                input_tokens,
                output_tokens,
                elapsed_ms,
                analysis_id=analysis.id,
            )

        analysis.status = "completed"
        analysis.analyzed_at = utcnow()
        await self._store.save_analysis(analysis)

        logger.info(
            "analysis_completed",
            model=model,
            complexity=complexity.value,
            cost_usd=f"{analysis.cost_usd:.6f}",
            duration_ms=elapsed_ms,
            sections=sum(1 for name in SECTION_COLUMNS if getattr(analysis, name)),
        )

    async def _complete(
        self,
        message: Message,
        pipeline: PipelineConfig,
        model: str,
        instructions: str | None,
    ) -> tuple[str, int, int]:
        """Get the raw analysis text and its token estimates."""
        if pipeline.demo_mode:
            logger.info("analysis_demo_mode")
            raw = build_demo_analysis(message.subject, message.from_name or message.from_address)
            if self._config.analysis.demo_delay_seconds > 0:
                await asyncio.sleep(self._config.analysis.demo_delay_seconds)
            return raw, estimate_tokens(message.body_plain), estimate_tokens(raw)

        if pipeline.provider is None:
            raise ProviderError(NO_PROVIDER_MESSAGE, kind=ErrorKind.CONFIG_MISSING)

        link_context = await self._links.fetch(message.body_plain or message.body_html)
        user_context = self._prompts.build_user_context(await self._store.get_user_profile())
        system_prompt, user_prompt = self._prompts.build(
            message, user_context, instructions, link_context
        )

        raw = await self._gateway.complete_chat(pipeline.provider, model, system_prompt, user_prompt)
        logger.debug("analysis_response_received", chars=len(raw))
        return raw, estimate_tokens(system_prompt + user_prompt), estimate_tokens(raw)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _persist_entities(
        self,
        message: Message,
        result: AnalysisResult,
        pipeline: PipelineConfig,
    ) -> None:
        message_id = message.id or 0

        obligations = extract_obligations(message_id, result.obligations_analysis)
        deadlines = extract_deadlines(message_id, result.deadlines_analysis)
        if obligations:
            await self._store.add_obligations(obligations)
        if deadlines:
            await self._store.add_deadlines(deadlines)

        contacts_added = 0
        for contact in extract_contacts(message_id, result.contacts_analysis):
            if await self._store.contact_exists(contact.email, contact.name):
                logger.info("contact_duplicate_skipped", name=contact.name, email=contact.email)
                continue
            await self._store.add_contact(contact)
            contacts_added += 1

        events_added = 0
        for event in extract_events(message_id, result.events_analysis):
            if await self._store.event_exists(message_id, event.title, event.start_time):
                continue
            await self._store.add_event(event)
            events_added += 1

        attachments_added = 0
        for attachment in extract_attachments(message_id, result.documents_analysis):
            if await self._store.attachment_exists(
                message_id, attachment.filename, attachment.local_path
            ):
                continue
            await self._store.add_attachment(attachment)
            attachments_added += 1

        tasks_created = 0
        if pipeline.auto_tasks_enabled and obligations:
            auto_tasks = AutoTaskPipeline(self._store, self._config.analysis.confidence_threshold)
            tasks_created = len(await auto_tasks.create_tasks(obligations, deadlines, message))

        logger.info(
            "analysis_entities_saved",
            obligations=len(obligations),
            deadlines=len(deadlines),
            contacts=contacts_added,
            events=events_added,
            attachments=attachments_added,
            tasks=tasks_created,
        )

    async def _update_message_tags(self, message: Message, result: AnalysisResult) -> None:
        """Copy importance and life domain onto the message. Best effort."""
        try:
            importance = None
            if result.summary:
                classification = json.loads(result.summary).get("classification") or {}
                importance = classification.get("importance")

            life_domain = None
            if result.life_domain_analysis:
                life_domain = json.loads(result.life_domain_analysis).get("domain")

            if importance is None and life_domain is None:
                return
            await self._store.update_message_tags(
                message.id or 0,
                importance=str(importance) if importance is not None else None,
                life_domain=str(life_domain) if life_domain is not None else None,
            )
        except (ValueError, AttributeError, DatabaseError) as e:
            logger.warning("message_tag_update_failed", error=str(e))

