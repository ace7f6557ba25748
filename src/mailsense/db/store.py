"""Database store with CRUD operations for all tables.

This module provides the DatabaseStore class that encapsulates all database
operations for MailSense. It uses aiosqlite for async access and exchanges
plain dataclasses with the rest of the package.

Timestamps are stored as UTC ISO-8601 strings with microsecond precision so
that lexical comparison in SQL matches chronological order.

Usage:
    from mailsense.db.store import DatabaseStore, Message

    store = DatabaseStore("data/mailsense.db")
    await store.initialize()

    message_id = await store.save_message(Message(source="gmail", source_id="abc"))
    analysis = await store.create_analysis(message_id)
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from mailsense.core.errors import DatabaseError
from mailsense.core.logging import get_logger
from mailsense.db.models import init_database

logger = get_logger(__name__)

AnalysisStatus = Literal["processing", "completed", "failed"]

# Attachment MIME marker for links (URL stored in local_path)
LINK_MIME_TYPE = "text/uri-list"
DOCUMENT_MIME_TYPE = "application/octet-stream"

# Analysis section columns, in schema order
SECTION_COLUMNS = (
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


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_db_time(value: datetime | None) -> str | None:
    """Serialize a datetime for storage (naive values are treated as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# =============================================================================
# Records
# =============================================================================


@dataclass
class Message:
    """Ingested email."""

    source: str
    source_id: str
    subject: str | None = None
    from_name: str | None = None
    from_address: str | None = None
    received_at: datetime | None = None
    body_plain: str | None = None
    body_html: str | None = None
    importance: str | None = None
    life_domain: str | None = None
    id: int | None = None


@dataclass
class AiAnalysis:
    """One analysis attempt for a message."""

    message_id: int
    status: AnalysisStatus = "processing"
    analyzed_at: datetime = field(default_factory=utcnow)
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
    model_used: str | None = None
    cost_usd: Decimal | None = None
    complexity: str | None = None
    processing_time_ms: int | None = None
    instructions: str | None = None
    raw_response: str | None = None
    id: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


@dataclass
class Obligation:
    """Something the user must do, extracted from a message."""

    message_id: int
    action: str
    trigger_value: str | None = None
    mandatory: bool = False
    consequence: str | None = None
    priority: int = 2
    confidence_score: float | None = None
    status: str = "pending"
    id: int | None = None


@dataclass
class Deadline:
    """A dated or relative deadline extracted from a message."""

    message_id: int
    description: str
    deadline_type: str = "absolute"
    deadline_date: datetime | None = None
    relative_trigger: str | None = None
    critical: bool = False
    status: str = "active"
    obligation_id: int | None = None
    id: int | None = None


@dataclass
class Contact:
    """A person mentioned in a message."""

    name: str
    source_message_id: int | None = None
    email: str | None = None
    phone: str | None = None
    organization: str | None = None
    title: str | None = None
    notes: str | None = None
    id: int | None = None


@dataclass
class CalendarEvent:
    """A schedulable event extracted from a message."""

    title: str
    start_time: datetime
    source_message_id: int | None = None
    description: str | None = None
    end_time: datetime | None = None
    location: str | None = None
    is_all_day: bool = False
    status: str = "confirmed"
    id: int | None = None


@dataclass
class Attachment:
    """A referenced document or link."""

    message_id: int
    filename: str
    mime_type: str = DOCUMENT_MIME_TYPE
    size_bytes: int = 0
    local_path: str | None = None
    id: int | None = None

    @property
    def is_link(self) -> bool:
        return self.mime_type == LINK_MIME_TYPE


@dataclass
class Task:
    """To-do item, usually derived from an obligation."""

    title: str
    description: str | None = None
    due_date: datetime | None = None
    priority: int = 3
    status: str = "pending"
    obligation_id: int | None = None
    context_link: str | None = None
    id: int | None = None


@dataclass
class UsageLog:
    """Token/cost/latency record for one LLM call."""

    model_name: str
    task_type: str
    complexity: str
    input_tokens: int
    output_tokens: int
    cost_usd: Decimal
    response_time_ms: int
    timestamp: datetime = field(default_factory=utcnow)
    quality_rating: int | None = None
    analysis_id: int | None = None
    id: int | None = None


@dataclass
class ProviderSettings:
    """Stored credentials and defaults for one LLM provider."""

    provider: str
    api_key: str | None = None
    model: str | None = None
    api_endpoint: str | None = None
    is_active: bool = False


@dataclass
class UserProfile:
    """Free-text profile fields injected into prompts."""

    full_name: str | None = None
    bio: str | None = None
    career_context: str | None = None
    household_context: str | None = None
    exclusion_instructions: str | None = None
    ai_directives: str | None = None


# =============================================================================
# Store
# =============================================================================


class DatabaseStore:
    """Database store for all MailSense data.

    Every public method opens its own connection, so a single instance is
    safe to share between concurrently running analyses.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed."""
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets busy_timeout so parallel workers wait on the WAL writer lock
        instead of failing, and enables foreign keys.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA synchronous = NORMAL")
            db.row_factory = aiosqlite.Row
            yield db

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def save_message(self, message: Message) -> int:
        """Insert or update a message keyed by (source, source_id).

        Returns:
            The message's database ID
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO messages (
                        source, source_id, subject, from_name, from_address,
                        received_at, body_plain, body_html, importance, life_domain
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source, source_id) DO UPDATE SET
                        subject = excluded.subject,
                        from_name = excluded.from_name,
                        from_address = excluded.from_address,
                        received_at = excluded.received_at,
                        body_plain = excluded.body_plain,
                        body_html = excluded.body_html
                    RETURNING id
                    """,
                    (
                        message.source,
                        message.source_id,
                        message.subject,
                        message.from_name,
                        message.from_address,
                        to_db_time(message.received_at),
                        message.body_plain,
                        message.body_html,
                        message.importance,
                        message.life_domain,
                    ),
                )
                row = await cursor.fetchone()
                await db.commit()
                message.id = row[0]
                logger.debug("message_saved", message_id=message.id)
                return message.id

        except aiosqlite.Error as e:
            logger.error("message_save_failed", source_id=message.source_id, error=str(e))
            raise DatabaseError(f"Failed to save message {message.source_id}: {e}") from e

    async def get_message(self, message_id: int) -> Message | None:
        """Get a message by ID, or None if it does not exist."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM messages WHERE id = ?", (message_id,))
                row = await cursor.fetchone()
                return self._row_to_message(row) if row else None

        except aiosqlite.Error as e:
            logger.error("message_get_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to get message {message_id}: {e}") from e

    async def get_recent_messages(self, limit: int = 5) -> list[Message]:
        """Most recently received messages, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM messages ORDER BY received_at DESC LIMIT ?", (limit,)
                )
                return [self._row_to_message(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("recent_messages_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get recent messages: {e}") from e

    async def update_message_tags(
        self,
        message_id: int,
        importance: str | None = None,
        life_domain: str | None = None,
    ) -> None:
        """Set the analysis-derived tags. None leaves a tag unchanged."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE messages SET
                        importance = COALESCE(?, importance),
                        life_domain = COALESCE(?, life_domain)
                    WHERE id = ?
                    """,
                    (importance, life_domain, message_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("message_tags_update_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to update tags for message {message_id}: {e}") from e

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            source=row["source"],
            source_id=row["source_id"],
            subject=row["subject"],
            from_name=row["from_name"],
            from_address=row["from_address"],
            received_at=from_db_time(row["received_at"]),
            body_plain=row["body_plain"],
            body_html=row["body_html"],
            importance=row["importance"],
            life_domain=row["life_domain"],
        )

    # =========================================================================
    # Analysis Operations
    # =========================================================================

    async def create_analysis(
        self,
        message_id: int,
        instructions: str | None = None,
        analyzed_at: datetime | None = None,
    ) -> AiAnalysis:
        """Create a new analysis attempt in 'processing' state."""
        analysis = AiAnalysis(
            message_id=message_id,
            instructions=instructions,
            analyzed_at=analyzed_at or utcnow(),
        )
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO ai_analyses (message_id, status, instructions, analyzed_at)
                    VALUES (?, 'processing', ?, ?)
                    """,
                    (message_id, instructions, to_db_time(analysis.analyzed_at)),
                )
                await db.commit()
                analysis.id = cursor.lastrowid
                logger.debug("analysis_created", message_id=message_id, analysis_id=analysis.id)
                return analysis

        except aiosqlite.Error as e:
            logger.error("analysis_create_failed", message_id=message_id, error=str(e))
            raise DatabaseError(
                f"Failed to create analysis for message {message_id}: {e}"
            ) from e

    async def get_analysis(self, analysis_id: int) -> AiAnalysis | None:
        """Get an analysis by ID, or None if it does not exist."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM ai_analyses WHERE id = ?", (analysis_id,))
                row = await cursor.fetchone()
                return self._row_to_analysis(row) if row else None

        except aiosqlite.Error as e:
            logger.error("analysis_get_failed", analysis_id=analysis_id, error=str(e))
            raise DatabaseError(f"Failed to get analysis {analysis_id}: {e}") from e

    async def get_analyses_for_message(self, message_id: int) -> list[AiAnalysis]:
        """All attempts for a message, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM ai_analyses WHERE message_id = ? ORDER BY id DESC",
                    (message_id,),
                )
                return [self._row_to_analysis(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("analyses_get_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to get analyses for message {message_id}: {e}") from e

    async def save_analysis(self, analysis: AiAnalysis) -> None:
        """Write every field of an existing analysis row."""
        if analysis.id is None:
            raise DatabaseError("Failed to save analysis: record has no ID; use create_analysis()")

        sections = [getattr(analysis, name) for name in SECTION_COLUMNS]
        assignments = ", ".join(f"{name} = ?" for name in SECTION_COLUMNS)
        try:
            async with self._db() as db:
                await db.execute(
                    f"""
                    UPDATE ai_analyses SET
                        {assignments},
                        model_used = ?, cost_usd = ?, complexity = ?,
                        processing_time_ms = ?, instructions = ?, raw_response = ?,
                        status = ?, analyzed_at = ?
                    WHERE id = ?
                    """,
                    (
                        *sections,
                        analysis.model_used,
                        str(analysis.cost_usd) if analysis.cost_usd is not None else None,
                        analysis.complexity,
                        analysis.processing_time_ms,
                        analysis.instructions,
                        analysis.raw_response,
                        analysis.status,
                        to_db_time(analysis.analyzed_at),
                        analysis.id,
                    ),
                )
                await db.commit()
                logger.debug("analysis_saved", analysis_id=analysis.id, status=analysis.status)

        except (aiosqlite.Error, UnicodeEncodeError) as e:
            logger.error("analysis_save_failed", analysis_id=analysis.id, error=str(e))
            raise DatabaseError(f"Failed to save analysis {analysis.id}: {e}") from e

    async def mark_analysis_failed(self, analysis_id: int, raw_response: str) -> None:
        """Write only status, raw_response and analyzed_at.

        Used when a full save_analysis() is rejected because of the section
        data itself.
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE ai_analyses SET status = 'failed', raw_response = ?, analyzed_at = ?
                    WHERE id = ?
                    """,
                    (raw_response, to_db_time(utcnow()), analysis_id),
                )
                await db.commit()
                logger.debug("analysis_marked_failed", analysis_id=analysis_id)

        except (aiosqlite.Error, UnicodeEncodeError) as e:
            logger.error("analysis_mark_failed_failed", analysis_id=analysis_id, error=str(e))
            raise DatabaseError(f"Failed to mark analysis {analysis_id} failed: {e}") from e

    async def touch_analysis(self, analysis_id: int) -> bool:
        """Restart the stale window of a 'processing' analysis.

        Returns:
            False if the analysis is missing or no longer processing
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "UPDATE ai_analyses SET analyzed_at = ? WHERE id = ? AND status = 'processing'",
                    (to_db_time(utcnow()), analysis_id),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("analysis_touch_failed", analysis_id=analysis_id, error=str(e))
            raise DatabaseError(f"Failed to refresh analysis {analysis_id}: {e}") from e

    async def fail_stale_analyses(
        self,
        older_than: datetime,
        raw_response: str,
        exclude_ids: Collection[int] = (),
    ) -> list[int]:
        """Force 'processing' analyses last touched before older_than to 'failed'.

        Args:
            older_than: Cutoff; rows with analyzed_at before this are stale
            raw_response: Error payload written to each reaped row
            exclude_ids: Analyses to leave alone (queued or running in this process)

        Returns:
            IDs of the reaped analyses
        """
        excluded = sorted(set(exclude_ids))
        not_in = f"AND id NOT IN ({', '.join('?' for _ in excluded)})" if excluded else ""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    f"""
                    UPDATE ai_analyses SET status = 'failed', raw_response = ?
                    WHERE status = 'processing' AND analyzed_at < ? {not_in}
                    RETURNING id
                    """,
                    (raw_response, to_db_time(older_than), *excluded),
                )
                reaped = [row[0] for row in await cursor.fetchall()]
                await db.commit()
                return reaped

        except aiosqlite.Error as e:
            logger.error("stale_analysis_reap_failed", error=str(e))
            raise DatabaseError(f"Failed to reap stale analyses: {e}") from e

    def _row_to_analysis(self, row: aiosqlite.Row) -> AiAnalysis:
        return AiAnalysis(
            id=row["id"],
            message_id=row["message_id"],
            status=row["status"],
            analyzed_at=from_db_time(row["analyzed_at"]),
            **{name: row[name] for name in SECTION_COLUMNS},
            model_used=row["model_used"],
            cost_usd=Decimal(row["cost_usd"]) if row["cost_usd"] is not None else None,
            complexity=row["complexity"],
            processing_time_ms=row["processing_time_ms"],
            instructions=row["instructions"],
            raw_response=row["raw_response"],
        )

    # =========================================================================
    # Obligation / Deadline Operations
    # =========================================================================

    async def add_obligations(self, obligations: list[Obligation]) -> list[Obligation]:
        """Insert obligations in one transaction and assign their IDs in place."""
        if not obligations:
            return obligations
        try:
            async with self._db() as db:
                for ob in obligations:
                    cursor = await db.execute(
                        """
                        INSERT INTO obligations (
                            message_id, action, trigger_value, mandatory,
                            consequence, priority, confidence_score, status
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            ob.message_id,
                            ob.action,
                            ob.trigger_value,
                            1 if ob.mandatory else 0,
                            ob.consequence,
                            ob.priority,
                            ob.confidence_score,
                            ob.status,
                        ),
                    )
                    ob.id = cursor.lastrowid
                await db.commit()
                return obligations

        except aiosqlite.Error as e:
            logger.error("obligations_add_failed", count=len(obligations), error=str(e))
            raise DatabaseError(f"Failed to add obligations: {e}") from e

    async def get_obligations(
        self,
        message_id: int | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[Obligation]:
        """Obligations filtered by message and/or status, highest priority first."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM obligations WHERE 1=1"
                params: list[Any] = []
                if message_id is not None:
                    query += " AND message_id = ?"
                    params.append(message_id)
                if status:
                    query += " AND status = ?"
                    params.append(status)
                query += " ORDER BY priority ASC, id ASC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [
                    Obligation(
                        id=row["id"],
                        message_id=row["message_id"],
                        action=row["action"],
                        trigger_value=row["trigger_value"],
                        mandatory=bool(row["mandatory"]),
                        consequence=row["consequence"],
                        priority=row["priority"],
                        confidence_score=row["confidence_score"],
                        status=row["status"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("obligations_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get obligations: {e}") from e

    async def add_deadlines(self, deadlines: list[Deadline]) -> list[Deadline]:
        """Insert deadlines in one transaction and assign their IDs in place."""
        if not deadlines:
            return deadlines
        try:
            async with self._db() as db:
                for dl in deadlines:
                    cursor = await db.execute(
                        """
                        INSERT INTO deadlines (
                            message_id, obligation_id, description, deadline_type,
                            deadline_date, relative_trigger, critical, status
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            dl.message_id,
                            dl.obligation_id,
                            dl.description,
                            dl.deadline_type,
                            to_db_time(dl.deadline_date),
                            dl.relative_trigger,
                            1 if dl.critical else 0,
                            dl.status,
                        ),
                    )
                    dl.id = cursor.lastrowid
                await db.commit()
                return deadlines

        except aiosqlite.Error as e:
            logger.error("deadlines_add_failed", count=len(deadlines), error=str(e))
            raise DatabaseError(f"Failed to add deadlines: {e}") from e

    async def get_deadlines(
        self,
        message_id: int | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[Deadline]:
        """Deadlines filtered by message and/or status, soonest first (undated last)."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM deadlines WHERE 1=1"
                params: list[Any] = []
                if message_id is not None:
                    query += " AND message_id = ?"
                    params.append(message_id)
                if status:
                    query += " AND status = ?"
                    params.append(status)
                query += " ORDER BY deadline_date IS NULL, deadline_date ASC, id ASC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [
                    Deadline(
                        id=row["id"],
                        message_id=row["message_id"],
                        obligation_id=row["obligation_id"],
                        description=row["description"],
                        deadline_type=row["deadline_type"],
                        deadline_date=from_db_time(row["deadline_date"]),
                        relative_trigger=row["relative_trigger"],
                        critical=bool(row["critical"]),
                        status=row["status"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("deadlines_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get deadlines: {e}") from e

    # =========================================================================
    # Contact / Event / Attachment Operations
    # =========================================================================

    async def contact_exists(self, email: str | None, name: str) -> bool:
        """Check for an existing contact by email (if given) or else by name.

        Both comparisons are case-insensitive and span all messages.
        """
        try:
            async with self._db() as db:
                if email:
                    cursor = await db.execute(
                        "SELECT 1 FROM contacts WHERE email IS NOT NULL AND lower(email) = ?",
                        (email.lower(),),
                    )
                else:
                    cursor = await db.execute(
                        "SELECT 1 FROM contacts WHERE lower(name) = ?", (name.lower(),)
                    )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("contact_exists_check_failed", error=str(e))
            raise DatabaseError(f"Failed to check contact existence: {e}") from e

    async def add_contact(self, contact: Contact) -> int:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO contacts (
                        source_message_id, name, email, phone, organization, title, notes
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        contact.source_message_id,
                        contact.name,
                        contact.email,
                        contact.phone,
                        contact.organization,
                        contact.title,
                        contact.notes,
                    ),
                )
                await db.commit()
                contact.id = cursor.lastrowid
                return contact.id

        except aiosqlite.Error as e:
            logger.error("contact_add_failed", error=str(e))
            raise DatabaseError(f"Failed to add contact: {e}") from e

    async def get_contacts(self, limit: int = 100) -> list[Contact]:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM contacts ORDER BY id ASC LIMIT ?", (limit,)
                )
                return [
                    Contact(
                        id=row["id"],
                        source_message_id=row["source_message_id"],
                        name=row["name"],
                        email=row["email"],
                        phone=row["phone"],
                        organization=row["organization"],
                        title=row["title"],
                        notes=row["notes"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("contacts_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get contacts: {e}") from e

    async def event_exists(self, message_id: int, title: str, start_time: datetime) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT 1 FROM calendar_events
                    WHERE source_message_id = ? AND title = ? AND start_time = ?
                    """,
                    (message_id, title, to_db_time(start_time)),
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("event_exists_check_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to check event existence: {e}") from e

    async def add_event(self, event: CalendarEvent) -> int:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO calendar_events (
                        source_message_id, title, description, start_time,
                        end_time, location, is_all_day, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.source_message_id,
                        event.title,
                        event.description,
                        to_db_time(event.start_time),
                        to_db_time(event.end_time),
                        event.location,
                        1 if event.is_all_day else 0,
                        event.status,
                    ),
                )
                await db.commit()
                event.id = cursor.lastrowid
                return event.id

        except aiosqlite.Error as e:
            logger.error("event_add_failed", error=str(e))
            raise DatabaseError(f"Failed to add calendar event: {e}") from e

    async def get_events(
        self,
        message_id: int | None = None,
        starting_after: datetime | None = None,
        limit: int = 100,
    ) -> list[CalendarEvent]:
        """Events filtered by source message and/or start time, earliest first."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM calendar_events WHERE 1=1"
                params: list[Any] = []
                if message_id is not None:
                    query += " AND source_message_id = ?"
                    params.append(message_id)
                if starting_after is not None:
                    query += " AND start_time >= ?"
                    params.append(to_db_time(starting_after))
                query += " ORDER BY start_time ASC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [
                    CalendarEvent(
                        id=row["id"],
                        source_message_id=row["source_message_id"],
                        title=row["title"],
                        description=row["description"],
                        start_time=from_db_time(row["start_time"]),
                        end_time=from_db_time(row["end_time"]),
                        location=row["location"],
                        is_all_day=bool(row["is_all_day"]),
                        status=row["status"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("events_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get calendar events: {e}") from e

    async def attachment_exists(
        self, message_id: int, filename: str, local_path: str | None
    ) -> bool:
        """Check the (message, filename, path-or-null) dedup key.

        A stored row with a NULL path matches any candidate path.
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT 1 FROM attachments
                    WHERE message_id = ? AND filename = ?
                      AND (local_path IS NULL OR local_path = ?)
                    """,
                    (message_id, filename, local_path),
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("attachment_exists_check_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to check attachment existence: {e}") from e

    async def add_attachment(self, attachment: Attachment) -> int:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO attachments (message_id, filename, mime_type, size_bytes, local_path)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        attachment.message_id,
                        attachment.filename,
                        attachment.mime_type,
                        attachment.size_bytes,
                        attachment.local_path,
                    ),
                )
                await db.commit()
                attachment.id = cursor.lastrowid
                return attachment.id

        except aiosqlite.Error as e:
            logger.error("attachment_add_failed", error=str(e))
            raise DatabaseError(f"Failed to add attachment: {e}") from e

    async def get_attachments(self, message_id: int) -> list[Attachment]:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM attachments WHERE message_id = ? ORDER BY id ASC",
                    (message_id,),
                )
                return [
                    Attachment(
                        id=row["id"],
                        message_id=row["message_id"],
                        filename=row["filename"],
                        mime_type=row["mime_type"],
                        size_bytes=row["size_bytes"],
                        local_path=row["local_path"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("attachments_get_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to get attachments: {e}") from e

    # =========================================================================
    # Task Operations
    # =========================================================================

    async def task_exists_for_obligation(self, obligation_id: int) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT 1 FROM tasks WHERE obligation_id = ?", (obligation_id,)
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            logger.error("task_exists_check_failed", obligation_id=obligation_id, error=str(e))
            raise DatabaseError(f"Failed to check task existence: {e}") from e

    async def add_tasks(self, tasks: list[Task]) -> int:
        """Insert tasks, skipping any whose obligation already has a task.

        Returns:
            Number of tasks actually inserted
        """
        if not tasks:
            return 0
        inserted = 0
        try:
            async with self._db() as db:
                for task in tasks:
                    cursor = await db.execute(
                        """
                        INSERT INTO tasks (
                            obligation_id, title, description, due_date,
                            priority, status, context_link
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(obligation_id) DO NOTHING
                        """,
                        (
                            task.obligation_id,
                            task.title,
                            task.description,
                            to_db_time(task.due_date),
                            task.priority,
                            task.status,
                            task.context_link,
                        ),
                    )
                    if cursor.rowcount:
                        task.id = cursor.lastrowid
                        inserted += 1
                await db.commit()
                return inserted

        except aiosqlite.Error as e:
            logger.error("tasks_add_failed", count=len(tasks), error=str(e))
            raise DatabaseError(f"Failed to add tasks: {e}") from e

    async def get_tasks(self, status: str | None = None, limit: int = 100) -> list[Task]:
        try:
            async with self._db() as db:
                query = "SELECT * FROM tasks"
                params: list[Any] = []
                if status:
                    query += " WHERE status = ?"
                    params.append(status)
                query += " ORDER BY priority ASC, id ASC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [
                    Task(
                        id=row["id"],
                        obligation_id=row["obligation_id"],
                        title=row["title"],
                        description=row["description"],
                        due_date=from_db_time(row["due_date"]),
                        priority=row["priority"],
                        status=row["status"],
                        context_link=row["context_link"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("tasks_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get tasks: {e}") from e

    # =========================================================================
    # Settings Operations
    # =========================================================================

    async def get_setting(self, key: str) -> str | None:
        """Get a runtime setting value, or None if unset."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT value FROM app_settings WHERE key = ?", (key,))
                row = await cursor.fetchone()
                return row["value"] if row else None

        except aiosqlite.Error as e:
            logger.error("setting_get_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to get setting {key}: {e}") from e

    async def set_setting(self, key: str, value: str) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO app_settings (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("setting_set_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to set setting {key}: {e}") from e

    async def get_provider_settings(self, provider: str) -> ProviderSettings | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM ai_settings WHERE provider = ?", (provider,)
                )
                row = await cursor.fetchone()
                return self._row_to_provider(row) if row else None

        except aiosqlite.Error as e:
            logger.error("provider_settings_get_failed", provider=provider, error=str(e))
            raise DatabaseError(f"Failed to get settings for provider {provider}: {e}") from e

    async def get_active_provider(self) -> ProviderSettings | None:
        """The globally active provider row, if any."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM ai_settings WHERE is_active = 1 ORDER BY updated_at DESC LIMIT 1"
                )
                row = await cursor.fetchone()
                return self._row_to_provider(row) if row else None

        except aiosqlite.Error as e:
            logger.error("active_provider_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get active provider: {e}") from e

    async def save_provider_settings(self, settings: ProviderSettings) -> None:
        """Upsert a provider row. Activating one provider deactivates the others."""
        try:
            async with self._db() as db:
                if settings.is_active:
                    await db.execute(
                        "UPDATE ai_settings SET is_active = 0 WHERE provider != ?",
                        (settings.provider,),
                    )
                await db.execute(
                    """
                    INSERT INTO ai_settings (provider, api_key, model, api_endpoint, is_active, updated_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(provider) DO UPDATE SET
                        api_key = excluded.api_key,
                        model = excluded.model,
                        api_endpoint = excluded.api_endpoint,
                        is_active = excluded.is_active,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        settings.provider,
                        settings.api_key,
                        settings.model,
                        settings.api_endpoint,
                        1 if settings.is_active else 0,
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("provider_settings_save_failed", provider=settings.provider, error=str(e))
            raise DatabaseError(
                f"Failed to save settings for provider {settings.provider}: {e}"
            ) from e

    def _row_to_provider(self, row: aiosqlite.Row) -> ProviderSettings:
        return ProviderSettings(
            provider=row["provider"],
            api_key=row["api_key"],
            model=row["model"],
            api_endpoint=row["api_endpoint"],
            is_active=bool(row["is_active"]),
        )

    async def get_user_profile(self) -> UserProfile | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM user_profiles WHERE id = 1")
                row = await cursor.fetchone()
                if not row:
                    return None
                return UserProfile(
                    full_name=row["full_name"],
                    bio=row["bio"],
                    career_context=row["career_context"],
                    household_context=row["household_context"],
                    exclusion_instructions=row["exclusion_instructions"],
                    ai_directives=row["ai_directives"],
                )

        except aiosqlite.Error as e:
            logger.error("user_profile_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get user profile: {e}") from e

    async def save_user_profile(self, profile: UserProfile) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO user_profiles (
                        id, full_name, bio, career_context, household_context,
                        exclusion_instructions, ai_directives, updated_at
                    ) VALUES (1, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(id) DO UPDATE SET
                        full_name = excluded.full_name,
                        bio = excluded.bio,
                        career_context = excluded.career_context,
                        household_context = excluded.household_context,
                        exclusion_instructions = excluded.exclusion_instructions,
                        ai_directives = excluded.ai_directives,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        profile.full_name,
                        profile.bio,
                        profile.career_context,
                        profile.household_context,
                        profile.exclusion_instructions,
                        profile.ai_directives,
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("user_profile_save_failed", error=str(e))
            raise DatabaseError(f"Failed to save user profile: {e}") from e

    # =========================================================================
    # Usage Log Operations
    # =========================================================================

    async def add_usage_log(self, log: UsageLog) -> int:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO ai_usage_logs (
                        timestamp, model_name, task_type, complexity, input_tokens,
                        output_tokens, cost_usd, response_time_ms, quality_rating, analysis_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        to_db_time(log.timestamp),
                        log.model_name,
                        log.task_type,
                        log.complexity,
                        log.input_tokens,
                        log.output_tokens,
                        str(log.cost_usd),
                        log.response_time_ms,
                        log.quality_rating,
                        log.analysis_id,
                    ),
                )
                await db.commit()
                log.id = cursor.lastrowid
                return log.id

        except aiosqlite.Error as e:
            logger.error("usage_log_add_failed", model=log.model_name, error=str(e))
            raise DatabaseError(f"Failed to add usage log: {e}") from e

    async def get_usage_logs(
        self,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[UsageLog]:
        """Usage records newest first, optionally bounded by time and count."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM ai_usage_logs"
                params: list[Any] = []
                if since is not None:
                    query += " WHERE timestamp >= ?"
                    params.append(to_db_time(since))
                query += " ORDER BY timestamp DESC, id DESC"
                if limit is not None:
                    query += " LIMIT ?"
                    params.append(limit)

                cursor = await db.execute(query, params)
                return [
                    UsageLog(
                        id=row["id"],
                        timestamp=from_db_time(row["timestamp"]),
                        model_name=row["model_name"],
                        task_type=row["task_type"],
                        complexity=row["complexity"],
                        input_tokens=row["input_tokens"],
                        output_tokens=row["output_tokens"],
                        cost_usd=Decimal(row["cost_usd"] or "0"),
                        response_time_ms=row["response_time_ms"],
                        quality_rating=row["quality_rating"],
                        analysis_id=row["analysis_id"],
                    )
                    for row in await cursor.fetchall()
                ]

        except aiosqlite.Error as e:
            logger.error("usage_logs_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get usage logs: {e}") from e
