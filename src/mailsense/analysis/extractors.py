"""Entity extraction from analysis section JSON.

Each extractor takes a message id and one section's JSON text and returns
unsaved store records. Items are validated one at a time with pydantic
models: a malformed item is logged and skipped, never aborting its
siblings, and a malformed section yields an empty list.

Usage:
    from mailsense.analysis.extractors import extract_obligations

    obligations = extract_obligations(message_id, result.obligations_analysis)
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mailsense.core.logging import get_logger
from mailsense.db.store import (
    DOCUMENT_MIME_TYPE,
    LINK_MIME_TYPE,
    Attachment,
    CalendarEvent,
    Contact,
    Deadline,
    Obligation,
)

logger = get_logger(__name__)

PRIORITY_MAP = {"high": 1, "medium": 2, "low": 3}
DEFAULT_PRIORITY = 2
UNTITLED_EVENT = "Untitled Event"

# Formats tried after ISO 8601
_FALLBACK_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d %B %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a provider-supplied date as UTC, or None when unparseable.

    Naive values are taken to be UTC. Nothing is ever fabricated: an
    unrecognized string yields None.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _FALLBACK_DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def map_priority(value: str | None) -> int:
    """high/medium/low -> 1/2/3; anything else -> 2."""
    if not value:
        return DEFAULT_PRIORITY
    return PRIORITY_MAP.get(value.strip().lower(), DEFAULT_PRIORITY)


# =============================================================================
# Item models
# =============================================================================


class _Item(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ObligationItem(_Item):
    action: str = Field(min_length=1)
    trigger: str | None = None
    mandatory: bool = False
    priority: str | None = None
    confidence: float | None = None
    consequence: str | None = None

    @field_validator("mandatory", mode="before")
    @classmethod
    def null_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class DeadlineItem(_Item):
    description: str = Field(min_length=1)
    date: Any = None
    type: str | None = None
    relative_trigger: str | None = Field(default=None, alias="relativeTrigger")
    critical: bool = False
    confidence: float | None = None

    @field_validator("critical", mode="before")
    @classmethod
    def null_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class ContactItem(_Item):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    organization: str | None = None
    title: str | None = None
    notes: str | None = None


class EventItem(_Item):
    title: str = UNTITLED_EVENT
    description: str | None = None
    start_time: datetime = Field(alias="startTime")
    end_time: datetime | None = Field(default=None, alias="endTime")
    location: str | None = None
    is_all_day: bool = Field(default=False, alias="isAllDay")

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, v: Any) -> Any:
        return v or UNTITLED_EVENT

    @field_validator("start_time", mode="before")
    @classmethod
    def require_start(cls, v: Any) -> datetime:
        parsed = parse_datetime(v)
        if parsed is None:
            raise ValueError(f"unparseable startTime: {v!r}")
        return parsed

    @field_validator("end_time", mode="before")
    @classmethod
    def optional_end(cls, v: Any) -> datetime | None:
        return parse_datetime(v)

    @field_validator("is_all_day", mode="before")
    @classmethod
    def null_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class DocumentItem(_Item):
    name: str = Field(min_length=1)
    type: str | None = None
    required_action: str | None = Field(default=None, alias="requiredAction")


class LinkItem(_Item):
    url: str = Field(min_length=1)
    description: str | None = None
    required_action: str | None = Field(default=None, alias="requiredAction")


# =============================================================================
# Helpers
# =============================================================================

ItemT = TypeVar("ItemT", bound=_Item)


def _load_list(section_json: str | None, key: str, section: str) -> list[Any]:
    """Decode a section and return its list under key, or [] on any problem."""
    if not section_json:
        return []
    try:
        data = json.loads(section_json)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("section_json_invalid", section=section, error=str(e))
        return []

    if not isinstance(data, dict):
        logger.warning("section_not_object", section=section)
        return []

    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        logger.warning("section_list_invalid", section=section, key=key)
        return []
    return items


def _validate_items(items: list[Any], model: type[ItemT], section: str) -> list[ItemT]:
    valid: list[ItemT] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("extraction_item_skipped", section=section, index=index, reason="not an object")
            continue
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "extraction_item_skipped",
                section=section,
                index=index,
                reason=e.errors()[0]["msg"] if e.errors() else str(e),
            )
    return valid


# =============================================================================
# Extractors
# =============================================================================


def extract_obligations(message_id: int, section_json: str | None) -> list[Obligation]:
    items = _validate_items(
        _load_list(section_json, "obligations", "obligations_analysis"),
        ObligationItem,
        "obligations_analysis",
    )
    return [
        Obligation(
            message_id=message_id,
            action=item.action,
            trigger_value=item.trigger,
            mandatory=item.mandatory,
            consequence=item.consequence,
            priority=map_priority(item.priority),
            confidence_score=item.confidence / 100 if item.confidence is not None else None,
        )
        for item in items
    ]


def extract_deadlines(message_id: int, section_json: str | None) -> list[Deadline]:
    """Deadlines keep a None date when the provider's date is absent or unparseable."""
    items = _validate_items(
        _load_list(section_json, "deadlines", "deadlines_analysis"),
        DeadlineItem,
        "deadlines_analysis",
    )
    return [
        Deadline(
            message_id=message_id,
            description=item.description,
            deadline_type=item.type or "absolute",
            deadline_date=parse_datetime(item.date),
            relative_trigger=item.relative_trigger,
            critical=item.critical,
        )
        for item in items
    ]


def extract_contacts(message_id: int, section_json: str | None) -> list[Contact]:
    items = _validate_items(
        _load_list(section_json, "contacts", "contacts_analysis"),
        ContactItem,
        "contacts_analysis",
    )
    return [
        Contact(
            name=item.name,
            source_message_id=message_id,
            email=item.email,
            phone=item.phone,
            organization=item.organization,
            title=item.title,
            notes=item.notes,
        )
        for item in items
    ]


def extract_events(message_id: int, section_json: str | None) -> list[CalendarEvent]:
    items = _validate_items(
        _load_list(section_json, "events", "events_analysis"),
        EventItem,
        "events_analysis",
    )
    return [
        CalendarEvent(
            title=item.title,
            start_time=item.start_time,
            source_message_id=message_id,
            description=item.description,
            end_time=item.end_time,
            location=item.location,
            is_all_day=item.is_all_day,
            status="confirmed",
        )
        for item in items
    ]


def extract_attachments(message_id: int, section_json: str | None) -> list[Attachment]:
    """Documents and links from the documents section, as attachment records.

    Links carry their URL in local_path and the text/uri-list mime type.
    """
    documents = _validate_items(
        _load_list(section_json, "documents", "documents_analysis"),
        DocumentItem,
        "documents_analysis",
    )
    links = _validate_items(
        _load_list(section_json, "links", "documents_analysis"),
        LinkItem,
        "documents_analysis",
    )

    attachments = [
        Attachment(message_id=message_id, filename=doc.name, mime_type=DOCUMENT_MIME_TYPE)
        for doc in documents
    ]
    attachments.extend(
        Attachment(
            message_id=message_id,
            filename=link.description or "Link",
            mime_type=LINK_MIME_TYPE,
            local_path=link.url,
        )
        for link in links
    )
    return attachments
