"""Per-run pipeline configuration.

Settings live in three places (stored app settings, stored provider
credentials, and the YAML/environment config). They are resolved once at
the start of a run into a PipelineConfig that is passed down explicitly,
so a settings change mid-run cannot produce a half-old, half-new analysis.

Provider resolution order:
1. Task-specific override (AnalysisProvider / ChatProvider setting)
2. The globally active provider
3. Environment fallback: OpenAI with the key from OPENAI_API_KEY
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from mailsense.core.logging import get_logger
from mailsense.providers.base import ProviderConfig
from mailsense.routing.classifier import BudgetMode

if TYPE_CHECKING:
    from mailsense.config_schema import AppConfig
    from mailsense.db.store import DatabaseStore, ProviderSettings

logger = get_logger(__name__)

# Setting keys in the app_settings table
ANALYSIS_PROVIDER_KEY = "AnalysisProvider"
CHAT_PROVIDER_KEY = "ChatProvider"
DEMO_MODE_KEY = "DemoMode"
BUDGET_MODE_KEY = "AiBudgetMode"
AUTO_TASK_KEY = "AutoTaskCreation"

PipelineTask = Literal["analysis", "chat"]

_TASK_PROVIDER_KEYS: dict[str, str] = {
    "analysis": ANALYSIS_PROVIDER_KEY,
    "chat": CHAT_PROVIDER_KEY,
}


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Everything a run needs to know about its environment.

    Attributes:
        provider: Resolved provider, or None when nothing is configured
        budget_mode: Cost/quality policy for model routing
        demo_mode: Return canned responses without calling a provider
        auto_tasks_enabled: Create tasks from extracted obligations
        from_stored_settings: True when provider came from the settings table
            (routing remaps the model only in that case)
    """

    provider: ProviderConfig | None
    budget_mode: BudgetMode
    demo_mode: bool
    auto_tasks_enabled: bool
    from_stored_settings: bool = False

    @property
    def provider_name(self) -> str:
        return self.provider.provider if self.provider else "openai"


def _to_provider_config(settings: ProviderSettings) -> ProviderConfig:
    return ProviderConfig(
        provider=settings.provider,
        api_key=settings.api_key,
        default_model=settings.model,
        api_endpoint=settings.api_endpoint,
    )


async def resolve_pipeline_config(
    store: DatabaseStore,
    app_config: AppConfig,
    task: PipelineTask = "analysis",
) -> PipelineConfig:
    """Resolve the provider, budget, demo, and auto-task settings for one run."""
    settings: ProviderSettings | None = None

    override = await store.get_setting(_TASK_PROVIDER_KEYS[task])
    if override:
        settings = await store.get_provider_settings(override)
        logger.info("task_provider_override", task=task, provider=override, found=settings is not None)

    if settings is None:
        settings = await store.get_active_provider()

    provider: ProviderConfig | None
    if settings is not None:
        provider = _to_provider_config(settings)
    else:
        env_key = os.environ.get(app_config.providers.api_key_env)
        provider = ProviderConfig(provider="openai", api_key=env_key) if env_key else None

    demo_setting = await store.get_setting(DEMO_MODE_KEY)
    demo_mode = (demo_setting or "").lower() == "true" or app_config.analysis.demo_mode

    budget_setting = await store.get_setting(BUDGET_MODE_KEY)
    default_budget = BudgetMode(app_config.analysis.default_budget_mode)
    budget_mode = BudgetMode.parse(budget_setting, default=default_budget)

    auto_task_setting = await store.get_setting(AUTO_TASK_KEY)
    auto_tasks_enabled = (auto_task_setting or "").lower() != "false"

    resolved = PipelineConfig(
        provider=provider,
        budget_mode=budget_mode,
        demo_mode=demo_mode,
        auto_tasks_enabled=auto_tasks_enabled,
        from_stored_settings=settings is not None,
    )
    logger.debug(
        "pipeline_config_resolved",
        task=task,
        provider=provider.provider if provider else None,
        budget_mode=budget_mode.value,
        demo_mode=demo_mode,
        auto_tasks_enabled=auto_tasks_enabled,
    )
    return resolved
