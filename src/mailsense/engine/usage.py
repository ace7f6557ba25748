"""AI usage tracking: per-call cost records and savings analytics.

Every LLM call is recorded with its token counts, computed cost, and
latency. Recording is best-effort: a failed write is logged and never
propagates into the analysis being recorded.

Savings are reported against a baseline of always using the premium model,
which is what smart routing is meant to beat.

Usage:
    from mailsense.engine.usage import UsageTracker

    tracker = UsageTracker(store)
    await tracker.log_usage("gpt-4o-mini", TaskType.COMPLEX_ANALYSIS,
                            TaskComplexity.MEDIUM, 1200, 400, 850)
    stats = await tracker.get_stats()
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from mailsense.core.errors import DatabaseError
from mailsense.core.logging import get_logger
from mailsense.db.store import UsageLog, utcnow
from mailsense.routing.classifier import PREMIUM_MODEL
from mailsense.routing.registry import calculate_cost

if TYPE_CHECKING:
    from mailsense.db.store import DatabaseStore
    from mailsense.routing.classifier import TaskComplexity
    from mailsense.routing.registry import TaskType

logger = get_logger(__name__)

DEFAULT_STATS_WINDOW = timedelta(days=30)


@dataclass
class UsageStats:
    """Aggregated usage over a period."""

    total_cost: Decimal = Decimal("0")
    baseline_cost: Decimal = Decimal("0")
    total_savings: Decimal = Decimal("0")
    total_requests: int = 0
    avg_response_time_ms: int = 0
    model_breakdown: dict[str, int] = field(default_factory=dict)
    task_type_breakdown: dict[str, int] = field(default_factory=dict)
    period: str = ""


class UsageTracker:
    """Records LLM usage and reports cost analytics.

    Attributes:
        store: Database store holding the usage log table
        baseline_model: Model whose cost the savings are measured against
    """

    def __init__(self, store: DatabaseStore, baseline_model: str = PREMIUM_MODEL):
        self.store = store
        self.baseline_model = baseline_model

    async def log_usage(
        self,
        model_name: str,
        task_type: TaskType,
        complexity: TaskComplexity,
        input_tokens: int,
        output_tokens: int,
        response_time_ms: int,
        quality_rating: int | None = None,
        analysis_id: int | None = None,
    ) -> UsageLog | None:
        """Record one call. Returns the saved record, or None if the write failed."""
        cost = calculate_cost(model_name, input_tokens, output_tokens)
        record = UsageLog(
            model_name=model_name,
            task_type=task_type.value,
            complexity=complexity.value,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            response_time_ms=response_time_ms,
            quality_rating=quality_rating,
            analysis_id=analysis_id,
        )

        try:
            await self.store.add_usage_log(record)
        except DatabaseError as e:
            logger.error("usage_log_failed", model=model_name, error=str(e))
            return None

        logger.info(
            "ai_usage_logged",
            model=model_name,
            task_type=task_type.value,
            complexity=complexity.value,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=f"{cost:.4f}",
            response_time_ms=response_time_ms,
        )
        return record

    async def get_stats(self, since: datetime | None = None) -> UsageStats:
        """Aggregate usage since a point in time (default: the last 30 days)."""
        now = utcnow()
        start = since or now - DEFAULT_STATS_WINDOW
        records = await self.store.get_usage_logs(since=start)

        if not records:
            return UsageStats(period=f"Since {start:%Y-%m-%d}")

        total_cost = sum((r.cost_usd for r in records), Decimal("0"))
        baseline_cost = sum(
            (calculate_cost(self.baseline_model, r.input_tokens, r.output_tokens) for r in records),
            Decimal("0"),
        )

        return UsageStats(
            total_cost=total_cost,
            baseline_cost=baseline_cost,
            total_savings=baseline_cost - total_cost,
            total_requests=len(records),
            avg_response_time_ms=int(sum(r.response_time_ms for r in records) / len(records)),
            model_breakdown=dict(Counter(r.model_name for r in records)),
            task_type_breakdown=dict(Counter(r.task_type for r in records)),
            period=f"{start:%Y-%m-%d} to {now:%Y-%m-%d}",
        )

    async def get_recent_usage(self, count: int = 50) -> list[UsageLog]:
        return await self.store.get_usage_logs(limit=count)
