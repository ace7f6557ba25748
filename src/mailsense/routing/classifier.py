"""Heuristic task-complexity classification and budget-aware model selection.

Complexity rules are evaluated as a priority chain; the first rule that
applies wins:

1. content shorter than 300 characters -> SIMPLE
2. three or more complexity keywords -> VERY_COMPLEX
3. any complexity keyword, or content longer than 2000 characters -> COMPLEX
4. any simple-extraction keyword -> SIMPLE
5. otherwise -> MEDIUM

Keywords are matched as substrings of the lower-cased content plus the
user's instructions. Each keyword counts once no matter how often it occurs.

Usage:
    from mailsense.routing.classifier import BudgetMode, TaskClassifier

    classifier = TaskClassifier()
    complexity = classifier.classify_complexity(body, instructions)
    model = classifier.recommend_model(complexity, BudgetMode.BALANCED)
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from mailsense.core.logging import get_logger
from mailsense.routing.registry import TaskType, calculate_cost

logger = get_logger(__name__)

SHORT_CONTENT_CHARS = 300
LONG_CONTENT_CHARS = 2000

COMPLEX_KEYWORDS = (
    "analyze",
    "why",
    "how does",
    "reasoning",
    "consequence",
    "risk",
    "compare",
    "evaluate",
    "justify",
    "implication",
)

SIMPLE_KEYWORDS = ("extract", "list", "find", "identify", "what is")

PREMIUM_MODEL = "gpt-4o"
DEFAULT_BUDGET_MODEL = "gpt-4o-mini"


class TaskComplexity(str, Enum):
    SIMPLE = "Simple"
    MEDIUM = "Medium"
    COMPLEX = "Complex"
    VERY_COMPLEX = "VeryComplex"


class BudgetMode(str, Enum):
    """User policy trading answer quality against cost."""

    PREMIUM = "Premium"
    BALANCED = "Balanced"
    ECONOMY = "Economy"

    @classmethod
    def parse(cls, value: str | None, default: BudgetMode | None = None) -> BudgetMode:
        """Parse a stored setting case-insensitively, falling back to default."""
        fallback = default or cls.BALANCED
        if not value:
            return fallback
        for mode in cls:
            if mode.value.lower() == value.strip().lower():
                return mode
        logger.warning("invalid_budget_mode", value=value, fallback=fallback.value)
        return fallback


# Premium is handled before the lookup: it always gets the top-tier model
_ROUTING_TABLE: dict[tuple[TaskComplexity, BudgetMode], str] = {
    (TaskComplexity.SIMPLE, BudgetMode.ECONOMY): "gemini-1.5-flash",
    (TaskComplexity.MEDIUM, BudgetMode.ECONOMY): "gpt-4o-mini",
    (TaskComplexity.COMPLEX, BudgetMode.ECONOMY): "gpt-4o-mini",
    (TaskComplexity.VERY_COMPLEX, BudgetMode.ECONOMY): PREMIUM_MODEL,
    (TaskComplexity.SIMPLE, BudgetMode.BALANCED): "gemini-1.5-flash",
    (TaskComplexity.MEDIUM, BudgetMode.BALANCED): "gpt-4o-mini",
    (TaskComplexity.COMPLEX, BudgetMode.BALANCED): PREMIUM_MODEL,
    (TaskComplexity.VERY_COMPLEX, BudgetMode.BALANCED): PREMIUM_MODEL,
}

_TASK_TYPE_LABELS: dict[str, TaskType] = {
    "extraction": TaskType.SIMPLE_EXTRACTION,
    "extract": TaskType.SIMPLE_EXTRACTION,
    "classification": TaskType.CLASSIFICATION,
    "classify": TaskType.CLASSIFICATION,
    "categorize": TaskType.CLASSIFICATION,
    "summary": TaskType.SUMMARIZATION,
    "summarize": TaskType.SUMMARIZATION,
    "analysis": TaskType.COMPLEX_ANALYSIS,
    "analyze": TaskType.COMPLEX_ANALYSIS,
    "reasoning": TaskType.MULTI_STEP_REASONING,
    "reason": TaskType.MULTI_STEP_REASONING,
    "think": TaskType.MULTI_STEP_REASONING,
}


class TaskClassifier:
    """Scores content complexity and recommends a model for a budget mode."""

    def classify_complexity(self, content: str, instructions: str | None = None) -> TaskComplexity:
        """Bucket a message body (plus optional instructions) by complexity."""
        content = content or ""
        if len(content) < SHORT_CONTENT_CHARS:
            logger.debug("complexity_short_content", length=len(content))
            return TaskComplexity.SIMPLE

        combined = f"{content} {instructions or ''}".lower()
        complex_hits = sum(1 for keyword in COMPLEX_KEYWORDS if keyword in combined)

        if complex_hits >= 3:
            logger.debug("complexity_keyword_count", keyword_hits=complex_hits)
            return TaskComplexity.VERY_COMPLEX
        if complex_hits >= 1:
            logger.debug("complexity_keyword_present", keyword_hits=complex_hits)
            return TaskComplexity.COMPLEX
        if len(content) > LONG_CONTENT_CHARS:
            logger.debug("complexity_long_content", length=len(content))
            return TaskComplexity.COMPLEX
        if any(keyword in combined for keyword in SIMPLE_KEYWORDS):
            logger.debug("complexity_simple_keyword")
            return TaskComplexity.SIMPLE
        logger.debug("complexity_default_medium", length=len(content))
        return TaskComplexity.MEDIUM

    def recommend_model(
        self,
        complexity: TaskComplexity,
        budget_mode: BudgetMode = BudgetMode.BALANCED,
    ) -> str:
        """Pick a model name for the complexity under the budget policy."""
        if budget_mode is BudgetMode.PREMIUM:
            model = PREMIUM_MODEL
        else:
            model = _ROUTING_TABLE.get((complexity, budget_mode), DEFAULT_BUDGET_MODEL)

        logger.info(
            "model_recommended",
            complexity=complexity.value,
            budget_mode=budget_mode.value,
            model=model,
        )
        return model

    def estimate_savings(
        self,
        complexity: TaskComplexity,
        budget_mode: BudgetMode,
        estimated_input_tokens: int = 1000,
        estimated_output_tokens: int = 500,
    ) -> Decimal:
        """Cost difference between always-premium and the recommended model."""
        recommended = self.recommend_model(complexity, budget_mode)
        premium_cost = calculate_cost(PREMIUM_MODEL, estimated_input_tokens, estimated_output_tokens)
        recommended_cost = calculate_cost(recommended, estimated_input_tokens, estimated_output_tokens)
        return premium_cost - recommended_cost

    def determine_task_type(self, label: str) -> TaskType:
        return _TASK_TYPE_LABELS.get(label.strip().lower(), TaskType.SUMMARIZATION)
