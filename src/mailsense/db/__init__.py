"""Database layer for MailSense.

Usage:
    from mailsense.db import DatabaseStore, Message

    store = DatabaseStore("data/mailsense.db")
    await store.initialize()

    message_id = await store.save_message(
        Message(source="gmail", source_id="18c2f", subject="Policy renewal")
    )
"""

from mailsense.db.models import SCHEMA_VERSION, init_database, verify_schema
from mailsense.db.store import (
    DOCUMENT_MIME_TYPE,
    LINK_MIME_TYPE,
    AiAnalysis,
    Attachment,
    CalendarEvent,
    Contact,
    DatabaseStore,
    Deadline,
    Message,
    Obligation,
    ProviderSettings,
    Task,
    UsageLog,
    UserProfile,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    "DOCUMENT_MIME_TYPE",
    "LINK_MIME_TYPE",
    # Dataclasses
    "Message",
    "AiAnalysis",
    "Obligation",
    "Deadline",
    "Contact",
    "CalendarEvent",
    "Attachment",
    "Task",
    "UsageLog",
    "ProviderSettings",
    "UserProfile",
]
