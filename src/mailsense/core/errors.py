"""Custom exception types for MailSense.

Error messages follow one convention throughout the package:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)
"""

from __future__ import annotations

from enum import Enum


class MailSenseError(Exception):
    """Base exception for all MailSense errors."""

    pass


class ConfigValidationError(MailSenseError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailSenseError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(MailSenseError):
    """Raised when SQLite operations fail."""

    pass


class MessageNotFoundError(MailSenseError):
    """Raised when an analysis is requested for a message that does not exist."""

    def __init__(self, message_id: int):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class QueueClosedError(MailSenseError):
    """Raised when work is submitted to an analysis queue that is shutting down."""

    pass


class ErrorKind(str, Enum):
    """Machine-readable category of a provider failure."""

    CONFIG_MISSING = "config_missing"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


class ProviderError(MailSenseError):
    """Raised when an LLM provider call fails.

    Attributes:
        kind: Failure category used for the user-facing error taxonomy
        provider: Provider name the call was routed to (e.g. 'openai')
        status_code: HTTP status code from the provider, if one was received
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
