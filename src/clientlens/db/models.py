"""SQLite database schema and initialization for ClientLens.

Five tables, all created idempotently:
- communications: Ingested emails, owner-scoped, keyed by provider message id
- clients: Tracked business relationships (read-only input to attribution)
- insights: Structured or raw relationship insights per communication
- llm_request_log: Claude API call logging for debugging
- agent_state: Key-value state persistence

Usage:
    from clientlens.db.models import init_database

    await init_database("data/clientlens.db")
"""

import stat
from pathlib import Path

import aiosqlite

from clientlens.core.errors import DatabaseError
from clientlens.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

-- Every communication ingested for an owner
CREATE TABLE IF NOT EXISTS communications (
    id TEXT PRIMARY KEY,                    -- uuid4
    owner_id TEXT NOT NULL,
    provider_id TEXT NOT NULL,              -- Mail provider's message id
    thread_id TEXT,                         -- Mail provider's conversation id
    client_id TEXT,                         -- Set by attribution, never cleared by re-ingest
    sender_email TEXT,
    recipient_email TEXT,
    subject TEXT,
    body TEXT,                              -- Sanitized (storage profile)
    sent_at DATETIME,
    is_automated INTEGER DEFAULT 0,         -- Set by the pipeline's automated filter
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(owner_id, provider_id)
);

CREATE INDEX IF NOT EXISTS idx_communications_owner_sent ON communications(owner_id, sent_at);
CREATE INDEX IF NOT EXISTS idx_communications_thread ON communications(owner_id, thread_id);
CREATE INDEX IF NOT EXISTS idx_communications_client ON communications(client_id);

-- Tracked clients
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    company TEXT,
    email TEXT,                             -- Canonical contact address
    domain TEXT,                            -- Explicit organisation domain
    current_project TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_clients_owner ON clients(owner_id);

-- Relationship insights
CREATE TABLE IF NOT EXISTS insights (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    communication_id TEXT NOT NULL REFERENCES communications(id),
    client_id TEXT,
    category TEXT,                          -- 'Risk', 'Upsell', 'Alignment', 'Note'; NULL = raw output only
    summary TEXT,
    evidence TEXT,
    suggested_action TEXT,
    confidence REAL,
    feedback TEXT,                          -- 'positive', 'negative', NULL
    raw_output TEXT,                        -- Model text the insight was extracted from
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- At most one structured insight per (communication, category)
CREATE UNIQUE INDEX IF NOT EXISTS idx_insights_comm_category
    ON insights(communication_id, category) WHERE category IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_insights_owner ON insights(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_insights_communication ON insights(communication_id);

-- LLM request/response log for debugging extraction and attribution
CREATE TABLE IF NOT EXISTS llm_request_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    task_type TEXT,                         -- 'insights', 'attribution'
    model TEXT,
    communication_id TEXT,
    insight_run_id TEXT,                    -- Correlation ID for the pipeline run
    prompt_json TEXT,
    response_json TEXT,
    input_tokens INTEGER,
    output_tokens INTEGER,
    duration_ms INTEGER,
    error TEXT                              -- NULL on success, error message on failure
);

CREATE INDEX IF NOT EXISTS idx_llm_log_timestamp ON llm_request_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_llm_log_communication ON llm_request_log(communication_id);
CREATE INDEX IF NOT EXISTS idx_llm_log_run ON llm_request_log(insight_run_id);

-- Key-value agent state
CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
-- Keys: 'schema_version', 'last_insight_run:<owner_id>', 'last_import:<owner_id>'
"""

REQUIRED_TABLES = (
    "communications",
    "clients",
    "insights",
    "llm_request_log",
    "agent_state",
)

SCHEMA_VERSION_KEY = "schema_version"

# The database holds email content: owner read/write only
_PRIVATE_MODE = stat.S_IRUSR | stat.S_IWUSR


def _restrict_permissions(db_path: Path) -> None:
    for path in (db_path, *(Path(f"{db_path}{suffix}") for suffix in ("-wal", "-shm"))):
        if path.exists():
            path.chmod(_PRIVATE_MODE)


async def _list_tables(db: aiosqlite.Connection) -> set[str]:
    cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in await cursor.fetchall()}


async def init_database(db_path: str | Path) -> None:
    """Create the schema (idempotent), switch to WAL and stamp the schema version.

    Raises:
        DatabaseError: The file cannot be created or the schema cannot be applied
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode=WAL")
            row = await cursor.fetchone()
            if row is None or str(row[0]).lower() != "wal":
                logger.warning(
                    "wal_mode_unavailable",
                    db_path=str(db_path),
                    journal_mode=row[0] if row else None,
                )

            await db.executescript(SCHEMA_SQL)
            await db.execute(
                "INSERT INTO agent_state (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = CURRENT_TIMESTAMP",
                (SCHEMA_VERSION_KEY, str(SCHEMA_VERSION)),
            )
            await db.commit()
            tables = await _list_tables(db)
    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Cannot initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the file is a SQLite database."
        ) from e

    _restrict_permissions(db_path)
    logger.info(
        "database_initialized",
        db_path=str(db_path),
        schema_version=SCHEMA_VERSION,
        tables=len(tables),
    )


async def verify_schema(db_path: str | Path) -> bool:
    """True when every table in REQUIRED_TABLES is present."""
    try:
        async with aiosqlite.connect(db_path) as db:
            tables = await _list_tables(db)
    except aiosqlite.Error as e:
        logger.error("schema_check_failed", db_path=str(db_path), error=str(e))
        return False

    missing = sorted(set(REQUIRED_TABLES) - tables)
    if missing:
        logger.warning("schema_tables_missing", db_path=str(db_path), missing=missing)
        return False
    return True
