"""Static catalog of LLM models with pricing and capability metadata.

Prices are USD per one million tokens. Costs are computed with Decimal so
that sub-cent amounts for cheap models add up exactly in usage reports.

Usage:
    from mailsense.routing.registry import calculate_cost, get_model

    cost = calculate_cost("gpt-4o-mini", input_tokens=1200, output_tokens=300)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from mailsense.core.logging import get_logger

logger = get_logger(__name__)

_PER_MILLION = Decimal(1_000_000)


class TaskType(str, Enum):
    """Kind of work an LLM call performs; recorded with each usage log."""

    SIMPLE_EXTRACTION = "SimpleExtraction"
    CLASSIFICATION = "Classification"
    SUMMARIZATION = "Summarization"
    COMPLEX_ANALYSIS = "ComplexAnalysis"
    MULTI_STEP_REASONING = "MultiStepReasoning"
    GENERAL_CHAT = "GeneralChat"


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Pricing and capability metadata for one model.

    Attributes:
        name: Model identifier as sent to the provider
        provider: Display name of the vendor
        input_cost_per_1m: USD per one million prompt tokens
        output_cost_per_1m: USD per one million completion tokens
        avg_response_ms: Typical end-to-end latency
        quality_tier: 1-5, higher is better
        max_context_tokens: Context window size
        best_for: Task types the model is a good fit for
    """

    name: str
    provider: str
    input_cost_per_1m: Decimal
    output_cost_per_1m: Decimal
    avg_response_ms: int
    quality_tier: int
    max_context_tokens: int
    best_for: tuple[TaskType, ...] = ()

    def cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        return (
            Decimal(input_tokens) * self.input_cost_per_1m
            + Decimal(output_tokens) * self.output_cost_per_1m
        ) / _PER_MILLION


MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(
        name="gpt-4o-mini",
        provider="OpenAI",
        input_cost_per_1m=Decimal("0.15"),
        output_cost_per_1m=Decimal("0.60"),
        avg_response_ms=800,
        quality_tier=3,
        max_context_tokens=128_000,
        best_for=(TaskType.SIMPLE_EXTRACTION, TaskType.CLASSIFICATION, TaskType.SUMMARIZATION),
    ),
    ModelInfo(
        name="gpt-4o",
        provider="OpenAI",
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00"),
        avg_response_ms=1500,
        quality_tier=5,
        max_context_tokens=128_000,
        best_for=(TaskType.COMPLEX_ANALYSIS, TaskType.MULTI_STEP_REASONING),
    ),
    ModelInfo(
        name="gpt-4-turbo",
        provider="OpenAI",
        input_cost_per_1m=Decimal("10.00"),
        output_cost_per_1m=Decimal("30.00"),
        avg_response_ms=2000,
        quality_tier=5,
        max_context_tokens=128_000,
        best_for=(TaskType.COMPLEX_ANALYSIS, TaskType.MULTI_STEP_REASONING),
    ),
    ModelInfo(
        name="claude-3-haiku",
        provider="Anthropic",
        input_cost_per_1m=Decimal("0.25"),
        output_cost_per_1m=Decimal("1.25"),
        avg_response_ms=600,
        quality_tier=3,
        max_context_tokens=200_000,
        best_for=(TaskType.SIMPLE_EXTRACTION, TaskType.CLASSIFICATION),
    ),
    ModelInfo(
        name="claude-3.5-sonnet",
        provider="Anthropic",
        input_cost_per_1m=Decimal("3.00"),
        output_cost_per_1m=Decimal("15.00"),
        avg_response_ms=1800,
        quality_tier=5,
        max_context_tokens=200_000,
        best_for=(TaskType.COMPLEX_ANALYSIS, TaskType.MULTI_STEP_REASONING),
    ),
    ModelInfo(
        name="gemini-1.5-flash",
        provider="Google",
        input_cost_per_1m=Decimal("0.075"),
        output_cost_per_1m=Decimal("0.30"),
        avg_response_ms=500,
        quality_tier=2,
        max_context_tokens=1_000_000,
        best_for=(TaskType.SIMPLE_EXTRACTION, TaskType.CLASSIFICATION, TaskType.SUMMARIZATION),
    ),
    ModelInfo(
        name="gemini-1.5-pro",
        provider="Google",
        input_cost_per_1m=Decimal("1.25"),
        output_cost_per_1m=Decimal("5.00"),
        avg_response_ms=1200,
        quality_tier=4,
        max_context_tokens=2_000_000,
        best_for=(TaskType.SUMMARIZATION, TaskType.COMPLEX_ANALYSIS),
    ),
    ModelInfo(
        name="gemini-2.0-flash-exp",
        provider="Google",
        input_cost_per_1m=Decimal("0"),  # free while experimental
        output_cost_per_1m=Decimal("0"),
        avg_response_ms=600,
        quality_tier=3,
        max_context_tokens=1_000_000,
        best_for=(TaskType.SIMPLE_EXTRACTION, TaskType.SUMMARIZATION, TaskType.GENERAL_CHAT),
    ),
)

_BY_NAME: dict[str, ModelInfo] = {m.name: m for m in MODELS}


def get_model(name: str) -> ModelInfo | None:
    """Look up a model by exact name."""
    return _BY_NAME.get(name)


def models_for_task(task_type: TaskType) -> list[ModelInfo]:
    """Models suited to a task type, cheapest first."""
    suited = [m for m in MODELS if task_type in m.best_for]
    return sorted(suited, key=lambda m: (m.input_cost_per_1m + m.output_cost_per_1m, -m.quality_tier))


def calculate_cost(model_name: str, input_tokens: int, output_tokens: int) -> Decimal:
    """Price a single call. Unknown models cost zero and log a warning."""
    model = _BY_NAME.get(model_name)
    if model is None:
        logger.warning("unknown_model_cost", model=model_name)
        return Decimal("0")
    return model.cost(input_tokens, output_tokens)
