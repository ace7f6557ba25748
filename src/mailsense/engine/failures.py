"""Failure classification for analysis runs.

Every failed analysis carries a JSON payload in its raw_response column so
the UI can show the user what went wrong and what to do about it:

    {"error": ..., "errorType": ..., "suggestion": ..., "provider": ...,
     "model": ..., "timestamp": ...}

Typed ProviderErrors map by kind; anything else is classified by sniffing
its message, since SDK and transport errors often carry only text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

from mailsense.core.errors import ErrorKind, ProviderError
from mailsense.db.store import utcnow
from mailsense.providers.base import sniff_error_kind

# errorType values written to failed analyses
QUOTA_EXCEEDED = "quota_exceeded"
AUTH_FAILED = "auth_failed"
TIMEOUT = "timeout"
CONNECTION_ERROR = "connection_error"
UNKNOWN = "unknown"

SUGGESTIONS = {
    QUOTA_EXCEEDED: "AI provider limit reached. Go to Settings to switch providers or try again later.",
    AUTH_FAILED: "API key is invalid or expired. Go to Settings to update your API key.",
    TIMEOUT: "Request timed out. The AI provider may be experiencing issues. Try again.",
    CONNECTION_ERROR: "Unable to connect to AI provider. Check your internet connection.",
    UNKNOWN: "",
}

_ERROR_TYPE_BY_KIND = {
    ErrorKind.QUOTA_EXCEEDED: QUOTA_EXCEEDED,
    ErrorKind.AUTH_FAILED: AUTH_FAILED,
    ErrorKind.TIMEOUT: TIMEOUT,
    ErrorKind.NETWORK: CONNECTION_ERROR,
    ErrorKind.CONFIG_MISSING: UNKNOWN,
    ErrorKind.EMPTY_RESPONSE: UNKNOWN,
    ErrorKind.UNKNOWN: UNKNOWN,
}

# Written to analyses reaped after sitting in 'processing' too long
STUCK_ANALYSIS_PAYLOAD = json.dumps(
    {
        "error": "Analysis timed out or service restarted",
        "errorType": TIMEOUT,
        "suggestion": "The analysis took too long or was interrupted. Please try again.",
    }
)


@dataclass(frozen=True, slots=True)
class AnalysisFailure:
    """A classified failure, ready to be written to a failed analysis."""

    error: str
    error_type: str
    suggestion: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_payload(self, provider: str | None, model: str | None) -> str:
        return json.dumps(
            {
                "error": self.error,
                "errorType": self.error_type,
                "suggestion": self.suggestion,
                "provider": provider or "openai",
                "model": model,
                "timestamp": self.timestamp.isoformat(),
            }
        )


def classify_failure(exc: BaseException) -> AnalysisFailure:
    """Map an exception onto the user-facing error taxonomy."""
    message = str(exc) or type(exc).__name__

    if isinstance(exc, ProviderError):
        kind = exc.kind
        if kind is ErrorKind.UNKNOWN:
            kind = sniff_error_kind(message)
    else:
        kind = sniff_error_kind(message)

    error_type = _ERROR_TYPE_BY_KIND[kind]
    return AnalysisFailure(error=message, error_type=error_type, suggestion=SUGGESTIONS[error_type])
