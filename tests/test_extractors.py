"""Tests for entity extraction from analysis sections."""

import json
from datetime import UTC, datetime

import pytest

from mailsense.analysis.extractors import (
    extract_attachments,
    extract_contacts,
    extract_deadlines,
    extract_events,
    extract_obligations,
    map_priority,
    parse_datetime,
)
from mailsense.db.store import DOCUMENT_MIME_TYPE, LINK_MIME_TYPE


def _section(key: str, items: list) -> str:
    return json.dumps({key: items})


class TestParseDatetime:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2025-06-01", datetime(2025, 6, 1, tzinfo=UTC)),
            ("2025-12-15T10:00:00Z", datetime(2025, 12, 15, 10, 0, tzinfo=UTC)),
            ("2025-12-15T12:00:00+02:00", datetime(2025, 12, 15, 10, 0, tzinfo=UTC)),
            ("06/01/2025", datetime(2025, 6, 1, tzinfo=UTC)),
            ("June 1, 2025", datetime(2025, 6, 1, tzinfo=UTC)),
        ],
    )
    def test_parses_supported_formats(self, value: str, expected: datetime) -> None:
        assert parse_datetime(value) == expected

    @pytest.mark.parametrize("value", [None, "", "next Tuesday", 12345])
    def test_unparseable_is_none(self, value: object) -> None:
        assert parse_datetime(value) is None


class TestMapPriority:
    def test_known_values(self) -> None:
        assert map_priority("high") == 1
        assert map_priority("Medium") == 2
        assert map_priority("LOW") == 3

    def test_unknown_defaults_to_medium(self) -> None:
        assert map_priority("urgent") == 2
        assert map_priority(None) == 2


class TestExtractObligations:
    """Tests for extract_obligations()."""

    def test_maps_fields(self) -> None:
        section = _section(
            "obligations",
            [
                {
                    "action": "Return the signed W-9 form",
                    "trigger": "Before first payment",
                    "mandatory": True,
                    "priority": "high",
                    "confidence": 90,
                    "consequence": "Payment delayed",
                }
            ],
        )

        (ob,) = extract_obligations(7, section)

        assert ob.message_id == 7
        assert ob.trigger_value == "Before first payment"
        assert ob.mandatory is True
        assert ob.priority == 1
        assert ob.confidence_score == pytest.approx(0.9)
        assert ob.status == "pending"

    def test_malformed_item_skipped_siblings_kept(self) -> None:
        """Test that one bad item does not abort the others."""
        section = _section(
            "obligations",
            [{"trigger": "no action"}, "not an object", {"action": "Pay invoice", "mandatory": None}],
        )

        obligations = extract_obligations(1, section)

        assert [ob.action for ob in obligations] == ["Pay invoice"]
        assert obligations[0].mandatory is False
        assert obligations[0].confidence_score is None

    @pytest.mark.parametrize("section", [None, "", "not json", "[]", '{"obligations": "nope"}'])
    def test_bad_section_is_empty(self, section: str | None) -> None:
        assert extract_obligations(1, section) == []


class TestExtractDeadlines:
    def test_dated_and_relative(self) -> None:
        section = _section(
            "deadlines",
            [
                {"description": "Return W-9", "date": "2025-06-01", "critical": True},
                {
                    "description": "Reply",
                    "date": None,
                    "type": "relative",
                    "relativeTrigger": "5 days from receipt",
                },
                {"description": "Vague", "date": "sometime soon"},
            ],
        )

        dated, relative, vague = extract_deadlines(3, section)

        assert dated.deadline_date == datetime(2025, 6, 1, tzinfo=UTC)
        assert dated.deadline_type == "absolute"
        assert dated.critical is True
        assert relative.deadline_type == "relative"
        assert relative.relative_trigger == "5 days from receipt"
        assert relative.deadline_date is None
        assert vague.deadline_date is None


class TestExtractContacts:
    def test_requires_name(self) -> None:
        section = _section(
            "contacts",
            [
                {"name": "Jane Doe", "email": "jane@acme.example", "title": "Manager"},
                {"email": "anon@acme.example"},
            ],
        )

        (contact,) = extract_contacts(5, section)

        assert contact.name == "Jane Doe"
        assert contact.source_message_id == 5
        assert contact.title == "Manager"


class TestExtractEvents:
    def test_requires_parseable_start(self) -> None:
        section = _section(
            "events",
            [
                {
                    "title": "Review",
                    "startTime": "2025-12-15T10:00:00Z",
                    "endTime": "2025-12-15T11:00:00Z",
                    "isAllDay": None,
                },
                {"title": "No start"},
                {"title": "Bad start", "startTime": "whenever"},
                {"title": "", "startTime": "2025-12-16"},
            ],
        )

        review, untitled = extract_events(2, section)

        assert review.start_time == datetime(2025, 12, 15, 10, 0, tzinfo=UTC)
        assert review.end_time == datetime(2025, 12, 15, 11, 0, tzinfo=UTC)
        assert review.is_all_day is False
        assert review.status == "confirmed"
        assert untitled.title == "Untitled Event"


class TestExtractAttachments:
    def test_documents_and_links(self) -> None:
        section = json.dumps(
            {
                "documents": [{"name": "W-9.pdf", "type": "form"}],
                "links": [
                    {"description": "Vendor portal", "url": "https://portal.example.com"},
                    {"url": "https://example.com/terms"},
                    {"description": "No URL"},
                ],
            }
        )

        doc, portal, bare = extract_attachments(4, section)

        assert doc.filename == "W-9.pdf"
        assert doc.mime_type == DOCUMENT_MIME_TYPE
        assert doc.local_path is None
        assert portal.filename == "Vendor portal"
        assert portal.mime_type == LINK_MIME_TYPE
        assert portal.local_path == "https://portal.example.com"
        assert bare.filename == "Link"
