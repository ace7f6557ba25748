"""Tests for the auto-task pipeline.

Covers priority mapping, due-date selection, description building, the
confidence threshold, and one-task-per-obligation idempotence.
"""

from datetime import UTC, datetime

import pytest

from conftest import make_message
from mailsense.analysis.auto_tasks import (
    AutoTaskPipeline,
    build_description,
    find_due_date,
    map_task_priority,
    truncate_with_ellipsis,
)
from mailsense.db.store import DatabaseStore, Deadline, Message, Obligation

JUNE_1 = datetime(2025, 6, 1, tzinfo=UTC)
JULY_1 = datetime(2025, 7, 1, tzinfo=UTC)


def _obligation(action: str = "Pay invoice", priority: int = 2, mandatory: bool = False, **kwargs) -> Obligation:
    return Obligation(message_id=1, action=action, priority=priority, mandatory=mandatory, **kwargs)


def _deadline(description: str, date: datetime | None = None) -> Deadline:
    return Deadline(message_id=1, description=description, deadline_date=date)


class TestMapTaskPriority:
    @pytest.mark.parametrize(
        ("priority", "mandatory", "expected"),
        [
            (1, False, 1),
            (1, True, 1),
            (2, True, 1),
            (3, False, 3),
            (3, True, 2),
            (5, False, 4),
            (None, False, 3),
            (9, True, 2),
        ],
    )
    def test_mapping(self, priority: int | None, mandatory: bool, expected: int) -> None:
        assert map_task_priority(priority, mandatory) == expected


class TestTruncate:
    def test_short_text_unchanged(self) -> None:
        assert truncate_with_ellipsis("short") == "short"

    def test_long_text(self) -> None:
        result = truncate_with_ellipsis("a" * 250)
        assert len(result) == 200
        assert result.endswith("...")


class TestFindDueDate:
    """Tests for due-date selection from a message's deadlines."""

    def test_no_deadlines(self) -> None:
        assert find_due_date(_obligation(), []) is None

    def test_keyword_match_wins_over_earliest(self) -> None:
        deadlines = [_deadline("Renewal", JUNE_1), _deadline("Invoice payment", JULY_1)]
        assert find_due_date(_obligation("Pay the invoice", priority=3), deadlines) == JULY_1

    def test_first_match_in_list_order(self) -> None:
        deadlines = [_deadline("Invoice B", JULY_1), _deadline("Invoice A", JUNE_1)]
        assert find_due_date(_obligation("Pay invoice", priority=3), deadlines) == JULY_1

    def test_short_words_do_not_match(self) -> None:
        """Test that words under four characters are ignored for matching."""
        deadlines = [_deadline("Pay by", JULY_1)]
        assert find_due_date(_obligation("Pay now", priority=3), deadlines) is None

    def test_undated_match_falls_back_for_high_priority(self) -> None:
        deadlines = [_deadline("Invoice", None), _deadline("Other", JULY_1), _deadline("Else", JUNE_1)]
        assert find_due_date(_obligation("Pay invoice", priority=1), deadlines) == JUNE_1

    def test_mandatory_low_priority_takes_earliest(self) -> None:
        deadlines = [_deadline("Other", JULY_1), _deadline("Else", JUNE_1)]
        assert find_due_date(_obligation("Sign", priority=3, mandatory=True), deadlines) == JUNE_1

    def test_low_priority_no_match_has_no_date(self) -> None:
        deadlines = [_deadline("Other", JULY_1)]
        assert find_due_date(_obligation("Sign", priority=3), deadlines) is None

    def test_all_undated(self) -> None:
        deadlines = [_deadline("Whenever"), _deadline("Later")]
        assert find_due_date(_obligation("Sign", priority=1), deadlines) is None

    def test_w9_scenario(self) -> None:
        """A W-9 request: 'submit' is not a substring of 'submission', so the
        high-priority fallback supplies the earliest date."""
        deadlines = [_deadline("W-9 submission deadline", JUNE_1)]
        ob = _obligation("Submit W-9 form", priority=1, mandatory=True)
        assert find_due_date(ob, deadlines) == JUNE_1


class TestBuildDescription:
    def test_all_lines(self) -> None:
        ob = _obligation(consequence="Late fee", trigger_value="On receipt")
        description = build_description(ob, make_message(subject="Invoice 42"))

        assert description == (
            "Risk if ignored: Late fee\n"
            "Trigger: On receipt\n"
            "From email: Invoice 42\n"
            "Sender: Bob Sender"
        )

    def test_sender_falls_back_to_address(self) -> None:
        description = build_description(_obligation(), make_message(from_name=None))
        assert description.endswith("Sender: bob@example.com")
        assert "Risk if ignored" not in description


class TestAutoTaskPipeline:
    """Tests for AutoTaskPipeline against a real store."""

    async def _saved_obligations(
        self, store: DatabaseStore, message: Message, obligations: list[Obligation]
    ) -> list[Obligation]:
        for ob in obligations:
            ob.message_id = message.id
        return await store.add_obligations(obligations)

    @pytest.mark.asyncio
    async def test_w9_task(self, store: DatabaseStore, saved_message: Message) -> None:
        """Test the end-to-end task for a mandatory high-priority obligation."""
        (ob,) = await self._saved_obligations(
            store,
            saved_message,
            [_obligation("Submit W-9 form", priority=1, mandatory=True, confidence_score=0.95)],
        )
        deadlines = [_deadline("W-9 submission deadline", JUNE_1)]

        created = await AutoTaskPipeline(store).create_tasks([ob], deadlines, saved_message)

        (task,) = created
        assert task.title == "Submit W-9 form"
        assert task.priority == 1
        assert task.due_date == JUNE_1
        assert task.status == "pending"
        assert task.obligation_id == ob.id
        assert task.context_link == f"/inbox?messageId={saved_message.id}"

        (stored,) = await store.get_tasks()
        assert stored.due_date == JUNE_1

    @pytest.mark.asyncio
    async def test_low_confidence_skipped(self, store: DatabaseStore, saved_message: Message) -> None:
        obligations = await self._saved_obligations(
            store,
            saved_message,
            [
                _obligation("Maybe do this", confidence_score=0.4),
                _obligation("Definitely do this", confidence_score=0.5),
                _obligation("Unscored"),
            ],
        )

        created = await AutoTaskPipeline(store, confidence_threshold=0.5).create_tasks(
            obligations, [], saved_message
        )

        assert [t.title for t in created] == ["Definitely do this", "Unscored"]

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, store: DatabaseStore, saved_message: Message) -> None:
        """Test that running twice on the same obligations is idempotent."""
        obligations = await self._saved_obligations(
            store, saved_message, [_obligation("Pay invoice"), _obligation("File receipt")]
        )
        pipeline = AutoTaskPipeline(store)

        first = await pipeline.create_tasks(obligations, [], saved_message)
        second = await pipeline.create_tasks(obligations, [], saved_message)

        assert len(first) == 2
        assert second == []
        assert len(await store.get_tasks()) == 2

    @pytest.mark.asyncio
    async def test_long_action_truncated(self, store: DatabaseStore, saved_message: Message) -> None:
        obligations = await self._saved_obligations(store, saved_message, [_obligation("x" * 300)])

        (task,) = await AutoTaskPipeline(store).create_tasks(obligations, [], saved_message)

        assert len(task.title) == 200
