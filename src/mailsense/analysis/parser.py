"""Tolerant decoding of the provider's analysis response.

The provider is asked for a bare JSON object with ten top-level keys, but
models routinely wrap it in markdown fences or return prose. Parsing never
raises: anything undecodable lands verbatim in the general-analysis slot so
the user can still read it.

Usage:
    from mailsense.analysis.parser import parse_analysis_response

    result = parse_analysis_response(raw_text)
    if result.obligations_analysis:
        obligations = extract_obligations(message_id, result.obligations_analysis)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from typing import Any

from mailsense.core.logging import get_logger

logger = get_logger(__name__)

SECTION_KEYS = (
    "summary",
    "obligations_analysis",
    "deadlines_analysis",
    "documents_analysis",
    "financial_records_analysis",
    "life_domain_analysis",
    "importance_analysis",
    "general_analysis",
    "contacts_analysis",
    "events_analysis",
)


@dataclass
class AnalysisResult:
    """Ten optional sections, each held as compact JSON text.

    general_analysis_text is set only when the response could not be
    decoded; it takes precedence over general_analysis when persisting.
    """

    summary: str | None = None
    obligations_analysis: str | None = None
    deadlines_analysis: str | None = None
    documents_analysis: str | None = None
    financial_records_analysis: str | None = None
    life_domain_analysis: str | None = None
    importance_analysis: str | None = None
    general_analysis: str | None = None
    contacts_analysis: str | None = None
    events_analysis: str | None = None
    general_analysis_text: str | None = None

    @property
    def general(self) -> str | None:
        return self.general_analysis_text or self.general_analysis

    def sections(self) -> dict[str, str | None]:
        """Section name -> JSON text, with the fallback text applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name in SECTION_KEYS}
        values["general_analysis"] = self.general
        return values


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[len("```"):]
    if cleaned.endswith("```"):
        cleaned = cleaned[: -len("```")]
    return cleaned.strip()


def storable_text(text: str) -> str:
    """Replace lone surrogates, which SQLite cannot encode, with "?"."""
    return text.encode("utf-8", "replace").decode("utf-8")


def _compact(value: Any) -> str | None:
    if value is None:
        return None
    return storable_text(json.dumps(value, separators=(",", ":"), ensure_ascii=False))


def parse_analysis_response(raw: str | None) -> AnalysisResult:
    """Decode a provider response into an AnalysisResult. Never raises."""
    if not raw:
        return AnalysisResult()
    raw = storable_text(raw)

    try:
        data = json.loads(strip_code_fences(raw))
    except (ValueError, RecursionError) as e:
        logger.warning("analysis_response_not_json", error=str(e), raw_preview=raw[:200])
        return AnalysisResult(general_analysis_text=raw)

    if not isinstance(data, dict):
        logger.warning("analysis_response_not_object", json_type=type(data).__name__)
        return AnalysisResult(general_analysis_text=raw)

    # Keys match case-insensitively; the first occurrence of a section wins
    lowered: dict[str, Any] = {}
    for key, value in data.items():
        lowered.setdefault(str(key).lower(), value)

    return AnalysisResult(**{key: _compact(lowered.get(key)) for key in SECTION_KEYS})
