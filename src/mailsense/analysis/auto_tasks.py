"""Auto-task pipeline: turn persisted obligations into to-do tasks.

For each obligation the pipeline decides whether it deserves a task
(confidence threshold, no existing task), picks a due date from the
message's deadlines, and builds a description linking back to the source
email. Tasks are unique per obligation, so re-running the pipeline on the
same obligations creates nothing new.

Usage:
    from mailsense.analysis.auto_tasks import AutoTaskPipeline

    pipeline = AutoTaskPipeline(store, confidence_threshold=0.5)
    created = await pipeline.create_tasks(obligations, deadlines, message)
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from mailsense.core.logging import get_logger
from mailsense.db.store import Task

if TYPE_CHECKING:
    from mailsense.db.store import DatabaseStore, Deadline, Message, Obligation

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 200
MIN_MATCH_WORD_LENGTH = 4

# Obligation priority (1-5) -> task priority (1=critical .. 4=low)
_TASK_PRIORITY = {1: 1, 2: 2, 3: 3, 4: 4, 5: 4}
DEFAULT_TASK_PRIORITY = 3


def map_task_priority(obligation_priority: int | None, mandatory: bool) -> int:
    """Map obligation priority to task priority, boosting mandatory items one level."""
    priority = _TASK_PRIORITY.get(obligation_priority, DEFAULT_TASK_PRIORITY)
    if mandatory and priority > 1:
        priority -= 1
    return priority


def truncate_with_ellipsis(text: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    if not text or len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def find_due_date(obligation: Obligation, deadlines: list[Deadline]) -> datetime | None:
    """Pick a due date for an obligation from the message's deadlines.

    The first deadline (in list order) whose description contains any
    action word of four or more characters is used if it is dated.
    Otherwise high-priority or mandatory obligations take the earliest
    dated deadline.
    """
    if not deadlines:
        return None

    words = [w for w in obligation.action.lower().split() if len(w) >= MIN_MATCH_WORD_LENGTH]
    match = next(
        (
            d
            for d in deadlines
            if d.description and any(w in d.description.lower() for w in words)
        ),
        None,
    )
    if match is not None and match.deadline_date is not None:
        return match.deadline_date

    if obligation.priority <= 2 or obligation.mandatory:
        dated = [d.deadline_date for d in deadlines if d.deadline_date is not None]
        return min(dated) if dated else None
    return None


def build_description(obligation: Obligation, message: Message) -> str:
    lines = []
    if obligation.consequence:
        lines.append(f"Risk if ignored: {obligation.consequence}")
    if obligation.trigger_value:
        lines.append(f"Trigger: {obligation.trigger_value}")
    lines.append(f"From email: {message.subject}")
    lines.append(f"Sender: {message.from_name or message.from_address}")
    return "\n".join(lines)


class AutoTaskPipeline:
    """Creates tasks from obligations and stores them.

    Attributes:
        store: Database store used for the existence check and inserts
        confidence_threshold: Obligations scoring below this are skipped
    """

    def __init__(self, store: DatabaseStore, confidence_threshold: float = 0.5):
        self.store = store
        self.confidence_threshold = confidence_threshold

    async def build_tasks(
        self,
        obligations: list[Obligation],
        deadlines: list[Deadline],
        message: Message,
    ) -> list[Task]:
        """Decide which obligations get tasks and build them, without saving."""
        tasks: list[Task] = []
        for obligation in obligations:
            if (
                obligation.confidence_score is not None
                and obligation.confidence_score < self.confidence_threshold
            ):
                logger.debug(
                    "auto_task_skipped_low_confidence",
                    action=obligation.action[:80],
                    confidence=obligation.confidence_score,
                )
                continue

            if obligation.id is not None and await self.store.task_exists_for_obligation(obligation.id):
                logger.debug("auto_task_skipped_existing", obligation_id=obligation.id)
                continue

            task = Task(
                title=truncate_with_ellipsis(obligation.action),
                description=build_description(obligation, message),
                due_date=find_due_date(obligation, deadlines),
                priority=map_task_priority(obligation.priority, obligation.mandatory),
                status="pending",
                obligation_id=obligation.id,
                context_link=f"/inbox?messageId={message.id}",
            )
            tasks.append(task)
            logger.info(
                "auto_task_built",
                title=task.title[:80],
                priority=task.priority,
                due=task.due_date.strftime("%Y-%m-%d") if task.due_date else None,
            )
        return tasks

    async def create_tasks(
        self,
        obligations: list[Obligation],
        deadlines: list[Deadline],
        message: Message,
    ) -> list[Task]:
        """Build and persist tasks; returns the tasks actually inserted.

        The store ignores a task whose obligation already has one, so two
        concurrent runs cannot double up.
        """
        tasks = await self.build_tasks(obligations, deadlines, message)
        if not tasks:
            return []

        inserted = await self.store.add_tasks(tasks)
        logger.info(
            "auto_tasks_created",
            message_id=message.id,
            built=len(tasks),
            inserted=inserted,
        )
        return [task for task in tasks if task.id is not None]
