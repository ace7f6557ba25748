"""SQLite database schema and initialization for MailSense.

Tables:
- messages: Ingested emails plus the importance/life-domain tags set by analysis
- ai_analyses: One row per analysis attempt with the ten raw JSON sections
- obligations, deadlines, contacts, calendar_events, attachments: Extracted entities
- tasks: To-do items derived from obligations by the auto-task pipeline
- ai_usage_logs: Append-only token/cost/latency records
- app_settings: Key-value runtime settings (DemoMode, AiBudgetMode, ...)
- ai_settings: Provider credentials and defaults keyed by provider name
- user_profiles: Single-row profile used for prompt personalization

Usage:
    from mailsense.db.models import init_database

    await init_database("data/mailsense.db")
"""

import stat
from pathlib import Path

import aiosqlite

from mailsense.core.errors import DatabaseError
from mailsense.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,                   -- 'gmail', 'outlook', 'manual', ...
    source_id TEXT NOT NULL,                -- Source-native message ID
    subject TEXT,
    from_name TEXT,
    from_address TEXT,
    received_at DATETIME,
    body_plain TEXT,
    body_html TEXT,
    importance TEXT,                        -- Set from summary.classification.importance
    life_domain TEXT,                       -- Set from life_domain_analysis.domain
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (source, source_id)
);

CREATE INDEX IF NOT EXISTS idx_messages_received_at ON messages(received_at);

CREATE TABLE IF NOT EXISTS ai_analyses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id),
    summary TEXT,
    obligations_analysis TEXT,
    deadlines_analysis TEXT,
    documents_analysis TEXT,
    financial_records_analysis TEXT,
    life_domain_analysis TEXT,
    importance_analysis TEXT,
    general_analysis TEXT,
    contacts_analysis TEXT,
    events_analysis TEXT,
    model_used TEXT,
    cost_usd TEXT,                          -- Decimal stored as text
    complexity TEXT,                        -- Classifier output for this attempt
    processing_time_ms INTEGER,
    instructions TEXT,                      -- User corrections supplied with the request
    raw_response TEXT,                      -- LLM text, or error JSON when failed
    status TEXT NOT NULL DEFAULT 'processing',  -- 'processing', 'completed', 'failed'
    analyzed_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ai_analyses_message ON ai_analyses(message_id);
CREATE INDEX IF NOT EXISTS idx_ai_analyses_status ON ai_analyses(status, analyzed_at);

CREATE TABLE IF NOT EXISTS obligations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id),
    action TEXT NOT NULL,
    trigger_value TEXT,
    mandatory INTEGER DEFAULT 0,
    consequence TEXT,
    priority INTEGER DEFAULT 2,             -- 1 = high ... 5 = low
    confidence_score REAL,                  -- 0.0-1.0, NULL when the model gave none
    status TEXT DEFAULT 'pending',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_obligations_message ON obligations(message_id);
CREATE INDEX IF NOT EXISTS idx_obligations_status ON obligations(status);

CREATE TABLE IF NOT EXISTS deadlines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id),
    obligation_id INTEGER REFERENCES obligations(id),
    description TEXT,
    deadline_type TEXT DEFAULT 'absolute',  -- 'absolute', 'relative'
    deadline_date DATETIME,                 -- UTC, NULL when not stated
    relative_trigger TEXT,
    critical INTEGER DEFAULT 0,
    status TEXT DEFAULT 'active',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_deadlines_message ON deadlines(message_id);
CREATE INDEX IF NOT EXISTS idx_deadlines_date ON deadlines(status, deadline_date);

CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_message_id INTEGER REFERENCES messages(id),
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    organization TEXT,
    title TEXT,
    notes TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(lower(email));
CREATE INDEX IF NOT EXISTS idx_contacts_name ON contacts(lower(name));

CREATE TABLE IF NOT EXISTS calendar_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_message_id INTEGER REFERENCES messages(id),
    title TEXT NOT NULL,
    description TEXT,
    start_time DATETIME NOT NULL,           -- UTC
    end_time DATETIME,
    location TEXT,
    is_all_day INTEGER DEFAULT 0,
    status TEXT DEFAULT 'confirmed',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_dedup
    ON calendar_events(source_message_id, title, start_time);

CREATE TABLE IF NOT EXISTS attachments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id),
    filename TEXT NOT NULL,
    mime_type TEXT,                         -- 'text/uri-list' marks a link
    size_bytes INTEGER DEFAULT 0,
    local_path TEXT,                        -- File path, or the URL for links
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id, filename);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    obligation_id INTEGER UNIQUE REFERENCES obligations(id),  -- At most one task per obligation
    title TEXT NOT NULL,
    description TEXT,
    due_date DATETIME,
    priority INTEGER DEFAULT 3,             -- 1 = critical ... 4 = low
    status TEXT DEFAULT 'pending',
    context_link TEXT,                      -- e.g. '/inbox?messageId=42'
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS ai_usage_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME NOT NULL,
    model_name TEXT NOT NULL,
    task_type TEXT,
    complexity TEXT,
    input_tokens INTEGER DEFAULT 0,
    output_tokens INTEGER DEFAULT 0,
    cost_usd TEXT DEFAULT '0',
    response_time_ms INTEGER DEFAULT 0,
    quality_rating INTEGER,
    analysis_id INTEGER
);

CREATE INDEX IF NOT EXISTS idx_usage_timestamp ON ai_usage_logs(timestamp);

CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
-- Keys: 'ChatProvider', 'AnalysisProvider', 'DemoMode', 'AiBudgetMode',
--        'AutoTaskCreation'

CREATE TABLE IF NOT EXISTS ai_settings (
    provider TEXT PRIMARY KEY,              -- 'openai', 'deepseek', 'openrouter', 'ollama', ...
    api_key TEXT,
    model TEXT,                             -- Pinned default model (always wins over routing)
    api_endpoint TEXT,
    is_active INTEGER DEFAULT 0,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS user_profiles (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    full_name TEXT,
    bio TEXT,
    career_context TEXT,
    household_context TEXT,
    exclusion_instructions TEXT,
    ai_directives TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""

REQUIRED_TABLES = (
    "messages",
    "ai_analyses",
    "obligations",
    "deadlines",
    "contacts",
    "calendar_events",
    "attachments",
    "tasks",
    "ai_usage_logs",
    "app_settings",
    "ai_settings",
    "user_profiles",
)


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode for
    concurrent access from the worker pool, and creates all tables and indexes.

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "wal_mode_not_enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Message bodies and API keys live here: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "database_initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables=table_count,
        )

    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that every required table exists.

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("schema_verification_failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing_tables
    if missing:
        logger.warning("missing_database_tables", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
