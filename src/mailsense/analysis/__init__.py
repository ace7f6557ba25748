"""Analysis building blocks: prompts, link context, parsing, extraction, auto-tasks.

Usage:
    from mailsense.analysis import PromptBuilder, parse_analysis_response
"""

from mailsense.analysis.auto_tasks import AutoTaskPipeline, map_task_priority
from mailsense.analysis.extractors import (
    extract_attachments,
    extract_contacts,
    extract_deadlines,
    extract_events,
    extract_obligations,
)
from mailsense.analysis.links import LinkContextFetcher
from mailsense.analysis.parser import AnalysisResult, parse_analysis_response
from mailsense.analysis.prompts import PromptBuilder

__all__ = [
    "AutoTaskPipeline",
    "map_task_priority",
    "extract_attachments",
    "extract_contacts",
    "extract_deadlines",
    "extract_events",
    "extract_obligations",
    "LinkContextFetcher",
    "AnalysisResult",
    "parse_analysis_response",
    "PromptBuilder",
]
