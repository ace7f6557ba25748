"""Smart routing: complexity classification, budget policy, and model pricing.

Usage:
    from mailsense.routing import BudgetMode, TaskClassifier, calculate_cost
"""

from mailsense.routing.classifier import (
    PREMIUM_MODEL,
    BudgetMode,
    TaskClassifier,
    TaskComplexity,
)
from mailsense.routing.registry import (
    MODELS,
    ModelInfo,
    TaskType,
    calculate_cost,
    get_model,
    models_for_task,
)

__all__ = [
    "PREMIUM_MODEL",
    "BudgetMode",
    "TaskClassifier",
    "TaskComplexity",
    "MODELS",
    "ModelInfo",
    "TaskType",
    "calculate_cost",
    "get_model",
    "models_for_task",
]
