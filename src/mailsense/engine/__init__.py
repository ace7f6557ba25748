"""Analysis engine: orchestration, worker queue, usage tracking, assistant features.

Usage:
    from mailsense.engine import AnalysisOrchestrator, AnalysisQueue

    orchestrator = AnalysisOrchestrator(store, config)
    queue = AnalysisQueue(orchestrator, concurrency=config.worker.concurrency)
    orchestrator.attach_queue(queue)
    await queue.start()
"""

from mailsense.engine.assistant import AssistantService
from mailsense.engine.failures import AnalysisFailure, classify_failure
from mailsense.engine.orchestrator import AnalysisOrchestrator
from mailsense.engine.pipeline_config import PipelineConfig, resolve_pipeline_config
from mailsense.engine.usage import UsageStats, UsageTracker
from mailsense.engine.worker import AnalysisQueue

__all__ = [
    "AnalysisFailure",
    "AnalysisOrchestrator",
    "AnalysisQueue",
    "AssistantService",
    "PipelineConfig",
    "UsageStats",
    "UsageTracker",
    "classify_failure",
    "resolve_pipeline_config",
]
