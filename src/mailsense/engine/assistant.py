"""Assistant features beyond analysis: reply drafting and context chat.

Both use the "chat" provider routing (ChatProvider setting, then the active
provider, then the environment key) and the same user identity context as
analysis. In demo mode both return canned text without a provider call.

Usage:
    from mailsense.engine.assistant import AssistantService

    assistant = AssistantService(store, config)
    draft = await assistant.draft_reply(message_id)
    answer = await assistant.chat("What is due this week?")
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from mailsense.analysis.demo import build_demo_draft, estimate_tokens
from mailsense.analysis.prompts import PromptBuilder
from mailsense.core.errors import ErrorKind, MessageNotFoundError, ProviderError
from mailsense.core.logging import get_logger
from mailsense.db.store import utcnow
from mailsense.engine.pipeline_config import PipelineConfig, resolve_pipeline_config
from mailsense.engine.usage import UsageTracker
from mailsense.providers.gateway import ProviderGateway
from mailsense.routing.classifier import DEFAULT_BUDGET_MODEL, TaskComplexity
from mailsense.routing.registry import TaskType

if TYPE_CHECKING:
    from mailsense.config_schema import AppConfig
    from mailsense.db.store import DatabaseStore

logger = get_logger(__name__)

CONTEXT_ITEM_LIMIT = 5

DRAFT_SYSTEM_PROMPT = """You are MailSense, a professional personal assistant drafting an email reply for the user.
YOUR USER IDENTITY:
{user_context}

Be concise, professional, and helpful. Mimic the user's likely tone based on context if obvious, otherwise stick to professional neutral.
Do NOT include things like 'Subject:' in the body unless asked. Just write the email body."""

CHAT_SYSTEM_PROMPT = """You are MailSense, a highly intelligent personal assistant. You have access to the user's data.

USER IDENTITY:
{user_context}

DATA CONTEXT:
{data_context}

Answer the user's question accurately based on this context. Be concise and helpful. If the user asks about something not in the context, politely say you don't see it in the recent data."""


class AssistantService:
    """Reply drafting and question answering over the user's recent data."""

    def __init__(
        self,
        store: DatabaseStore,
        config: AppConfig,
        gateway: ProviderGateway | None = None,
        prompt_builder: PromptBuilder | None = None,
        usage_tracker: UsageTracker | None = None,
    ):
        self._store = store
        self._config = config
        self._gateway = gateway or ProviderGateway(config.providers)
        self._prompts = prompt_builder or PromptBuilder()
        self._usage = usage_tracker or UsageTracker(store, config.analysis.baseline_model)

    async def draft_reply(self, message_id: int, instructions: str | None = None) -> str:
        """Draft a reply body for a message.

        Raises:
            MessageNotFoundError: If the message does not exist
            ProviderError: If no provider is configured or the call fails
        """
        message = await self._store.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)

        pipeline = await resolve_pipeline_config(self._store, self._config, task="chat")
        if pipeline.demo_mode:
            await self._demo_pause()
            return build_demo_draft(message.subject, message.from_name)

        user_context = self._prompts.build_user_context(await self._store.get_user_profile())
        system_prompt = DRAFT_SYSTEM_PROMPT.format(user_context=user_context)
        if instructions and instructions.strip():
            system_prompt += f"\n\nUSER INSTRUCTIONS FOR THIS DRAFT:\n{instructions.strip()}"

        user_prompt = (
            "Draft a reply to this email:\n"
            f"From: {message.from_name or message.from_address}\n"
            f"Subject: {message.subject}\n"
            "Body:\n"
            f"{message.body_plain or message.body_html or '(No Content)'}"
        )

        return await self._complete(pipeline, system_prompt, user_prompt, TaskComplexity.MEDIUM)

    async def chat(self, question: str) -> str:
        """Answer a question using pending obligations, deadlines, events, and recent mail."""
        obligations = await self._store.get_obligations(status="pending", limit=CONTEXT_ITEM_LIMIT)
        deadlines = await self._store.get_deadlines(status="active", limit=CONTEXT_ITEM_LIMIT)
        events = await self._store.get_events(starting_after=utcnow(), limit=CONTEXT_ITEM_LIMIT)
        messages = await self._store.get_recent_messages(limit=CONTEXT_ITEM_LIMIT)

        pipeline = await resolve_pipeline_config(self._store, self._config, task="chat")
        if pipeline.demo_mode:
            await self._demo_pause()
            return (
                f"[DEMO MODE] I received your message: '{question}'. \n\n"
                f"I can see you have {len(obligations)} pending obligations and "
                f"{len(deadlines)} deadlines coming up."
            )

        sections: list[str] = []
        if obligations:
            lines = [f"- [Priority {o.priority}] {o.action} ({o.trigger_value or ''})" for o in obligations]
            sections.append("PENDING OBLIGATIONS:\n" + "\n".join(lines))
        if deadlines:
            lines = [
                f"- {d.description} (Due: {d.deadline_date:%Y-%m-%d})"
                if d.deadline_date
                else f"- {d.description} (Due: {d.relative_trigger or 'unspecified'})"
                for d in deadlines
            ]
            sections.append("UPCOMING DEADLINES:\n" + "\n".join(lines))
        if events:
            lines = [
                f"- {e.title} at {e.start_time:%Y-%m-%d %H:%M} ({e.location or 'No Loc'})"
                for e in events
            ]
            sections.append("UPCOMING EVENTS:\n" + "\n".join(lines))
        if messages:
            lines = [
                f"- From {m.from_name or m.from_address}: '{m.subject}'"
                + (f" ({m.received_at:%Y-%m-%d %H:%M})" if m.received_at else "")
                for m in messages
            ]
            sections.append("RECENT EMAILS:\n" + "\n".join(lines))

        user_context = self._prompts.build_user_context(await self._store.get_user_profile())
        system_prompt = CHAT_SYSTEM_PROMPT.format(
            user_context=user_context,
            data_context="\n\n".join(sections),
        )
        return await self._complete(pipeline, system_prompt, question, TaskComplexity.SIMPLE)

    async def _complete(
        self,
        pipeline: PipelineConfig,
        system_prompt: str,
        user_prompt: str,
        complexity: TaskComplexity,
    ) -> str:
        if pipeline.provider is None:
            raise ProviderError(
                "AI Provider not configured. Go to Settings and add an API key.",
                kind=ErrorKind.CONFIG_MISSING,
            )

        model = pipeline.provider.default_model or DEFAULT_BUDGET_MODEL
        started = time.monotonic()
        text = await self._gateway.complete_chat(pipeline.provider, model, system_prompt, user_prompt)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        await self._usage.log_usage(
            model,
            TaskType.GENERAL_CHAT,
            complexity,
            estimate_tokens(system_prompt + user_prompt),
            estimate_tokens(text),
            elapsed_ms,
        )
        return text

    async def _demo_pause(self) -> None:
        if self._config.analysis.demo_delay_seconds > 0:
            await asyncio.sleep(self._config.analysis.demo_delay_seconds)
