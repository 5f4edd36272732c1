"""Database store with CRUD operations for all tables.

This module provides the DatabaseStore class that encapsulates all database
operations for ClientLens. It uses aiosqlite for async access and provides
type-safe operations with dataclasses. Every query on owner data is scoped
by owner_id.

Usage:
    from clientlens.db.store import DatabaseStore

    store = DatabaseStore("data/clientlens.db")
    await store.initialize()

    # Communication operations
    await store.save_communication(communication)
    recent = await store.list_communications("owner-1", limit=50)

    # Insight operations
    outcome = await store.upsert_structured_insight(...)
    await store.set_insight_feedback("owner-1", insight_id, "positive")
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from clientlens.core.errors import DatabaseError
from clientlens.core.logging import get_correlation_id, get_logger
from clientlens.db.models import init_database

logger = get_logger(__name__)

# Type aliases
Feedback = Literal["positive", "negative"]
UpsertOutcome = Literal["inserted", "updated"]


def new_id() -> str:
    """Generate a record id for communications and clients."""
    return str(uuid.uuid4())


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _format_bound(value: datetime) -> str:
    """Timestamps are stored as naive local ISO strings."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat()


def _load_json_column(value: str | None) -> Any:
    """Decode a JSON text column; text that is not JSON is returned as-is."""
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


@dataclass
class Communication:
    """Communication record from the database."""

    id: str
    owner_id: str
    provider_id: str
    thread_id: str | None = None
    client_id: str | None = None
    sender_email: str | None = None
    recipient_email: str | None = None
    subject: str | None = None
    body: str | None = None
    sent_at: datetime | None = None
    is_automated: bool = False
    created_at: datetime | None = None

    @property
    def thread_key(self) -> str:
        """Grouping key; a message without a thread is its own thread."""
        return self.thread_id or self.id


@dataclass
class ClientProfile:
    """Client record from the database."""

    id: str
    owner_id: str
    name: str
    company: str | None = None
    email: str | None = None
    domain: str | None = None
    current_project: str | None = None
    created_at: datetime | None = None


@dataclass
class Insight:
    """Insight record from the database.

    category is None for a raw-output record written when no structured
    insight could be extracted.
    """

    id: int
    owner_id: str
    communication_id: str
    client_id: str | None = None
    category: str | None = None
    summary: str | None = None
    evidence: str | None = None
    suggested_action: str | None = None
    confidence: float | None = None
    feedback: Feedback | None = None
    raw_output: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class LLMLogEntry:
    """LLM request log entry from the database."""

    id: int
    timestamp: datetime | None
    task_type: str | None = None
    model: str | None = None
    communication_id: str | None = None
    insight_run_id: str | None = None
    prompt_json: Any = None
    response_json: Any = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    duration_ms: int | None = None
    error: str | None = None


_COMMUNICATION_UPSERT_SQL = """
    INSERT INTO communications (
        id, owner_id, provider_id, thread_id, client_id,
        sender_email, recipient_email, subject, body,
        sent_at, is_automated, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(owner_id, provider_id) DO UPDATE SET
        thread_id = excluded.thread_id,
        sender_email = excluded.sender_email,
        recipient_email = excluded.recipient_email,
        subject = excluded.subject,
        body = excluded.body,
        sent_at = excluded.sent_at,
        client_id = COALESCE(communications.client_id, excluded.client_id),
        is_automated = MAX(communications.is_automated, excluded.is_automated)
    RETURNING id
"""


class DatabaseStore:
    """Database store for all ClientLens data.

    This class provides async CRUD operations for all database tables.
    It handles connection management, JSON serialization, and type conversion.

    Attributes:
        db_path: Path to the SQLite database file
        _initialized: Whether the database has been initialized
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets all required PRAGMAs for reliability and performance:
        - busy_timeout: 10s to handle concurrent pipeline runs and imports
        - foreign_keys: ON to enforce referential integrity
        - synchronous: NORMAL (safe with WAL, faster writes)
        - cache_size: 64MB for better read performance
        - temp_store: MEMORY for faster temp operations
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")

            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA cache_size = -64000")  # 64MB
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Connection holding the write lock for its whole lifetime.

        Commits on normal exit and rolls back if the body raises.
        """
        async with self._db() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    # =========================================================================
    # Communication Operations
    # =========================================================================

    @staticmethod
    def _communication_params(communication: Communication) -> tuple[Any, ...]:
        return (
            communication.id,
            communication.owner_id,
            communication.provider_id,
            communication.thread_id,
            communication.client_id,
            communication.sender_email,
            communication.recipient_email,
            communication.subject,
            communication.body,
            _format_datetime(communication.sent_at),
            1 if communication.is_automated else 0,
            _format_datetime(communication.created_at or datetime.now()),
        )

    async def save_communication(self, communication: Communication) -> str:
        """Insert a communication or refresh the stored copy.

        Keyed on (owner_id, provider_id). An existing record keeps its id,
        its client_id and its is_automated flag.

        Args:
            communication: Communication dataclass to save

        Returns:
            The stored record's id (the existing id on re-ingest)

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    _COMMUNICATION_UPSERT_SQL,
                    self._communication_params(communication),
                )
                row = await cursor.fetchone()
                await db.commit()

                logger.debug(
                    "Communication saved",
                    communication_id=row["id"],
                    provider_id=communication.provider_id,
                )
                return row["id"]

        except aiosqlite.Error as e:
            logger.error(
                "Failed to save communication",
                provider_id=communication.provider_id,
                error=str(e),
            )
            raise DatabaseError(
                f"Failed to save communication {communication.provider_id}: {e}"
            ) from e

    async def get_communication(self, owner_id: str, communication_id: str) -> Communication | None:
        """Get one of the owner's communications by id."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM communications WHERE id = ? AND owner_id = ?",
                    (communication_id, owner_id),
                )
                row = await cursor.fetchone()
                return self._row_to_communication(row) if row else None

        except aiosqlite.Error as e:
            logger.error(
                "Failed to get communication",
                communication_id=communication_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to get communication {communication_id}: {e}") from e

    async def list_communications(
        self,
        owner_id: str,
        limit: int = 50,
        since: datetime | None = None,
    ) -> list[Communication]:
        """Get the owner's most recent communications, newest first.

        Args:
            owner_id: Owner whose communications to load
            limit: Maximum number to return
            since: Only communications sent at or after this time

        Returns:
            List of Communication dataclasses ordered by sent_at descending
        """
        try:
            async with self._db() as db:
                query = "SELECT * FROM communications WHERE owner_id = ?"
                params: list[Any] = [owner_id]

                if since:
                    query += " AND sent_at >= ?"
                    params.append(since.isoformat())

                query += " ORDER BY sent_at DESC, created_at DESC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [self._row_to_communication(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to list communications", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to list communications: {e}") from e

    async def update_communication_attribution(
        self,
        owner_id: str,
        communication_id: str,
        client_id: str,
    ) -> None:
        """Record the client a communication was attributed to."""
        try:
            async with self._db() as db:
                await db.execute(
                    "UPDATE communications SET client_id = ? WHERE id = ? AND owner_id = ?",
                    (client_id, communication_id, owner_id),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error(
                "Failed to update communication attribution",
                communication_id=communication_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to update attribution: {e}") from e

    async def mark_communications_automated(self, owner_id: str, communication_ids: list[str]) -> int:
        """Flag communications as automated.

        Returns:
            Number of records updated
        """
        if not communication_ids:
            return 0

        try:
            async with self._db() as db:
                placeholders = ",".join("?" * len(communication_ids))
                cursor = await db.execute(
                    f"UPDATE communications SET is_automated = 1 "
                    f"WHERE owner_id = ? AND is_automated = 0 AND id IN ({placeholders})",
                    [owner_id, *communication_ids],
                )
                await db.commit()
                return cursor.rowcount

        except aiosqlite.Error as e:
            logger.error("Failed to mark communications automated", error=str(e))
            raise DatabaseError(f"Failed to mark communications automated: {e}") from e

    def _row_to_communication(self, row: aiosqlite.Row) -> Communication:
        """Convert a database row to a Communication dataclass."""
        return Communication(
            id=row["id"],
            owner_id=row["owner_id"],
            provider_id=row["provider_id"],
            thread_id=row["thread_id"],
            client_id=row["client_id"],
            sender_email=row["sender_email"],
            recipient_email=row["recipient_email"],
            subject=row["subject"],
            body=row["body"],
            sent_at=_parse_datetime(row["sent_at"]),
            is_automated=bool(row["is_automated"]),
            created_at=_parse_datetime(row["created_at"]),
        )

    # =========================================================================
    # Client Operations
    # =========================================================================

    async def save_client(self, client: ClientProfile) -> None:
        """Save or update a client record.

        Raises:
            DatabaseError: If the operation fails, or the id belongs to
                another owner
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO clients (
                        id, owner_id, name, company, email, domain,
                        current_project, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        company = excluded.company,
                        email = excluded.email,
                        domain = excluded.domain,
                        current_project = excluded.current_project
                    WHERE clients.owner_id = excluded.owner_id
                    RETURNING id
                    """,
                    (
                        client.id,
                        client.owner_id,
                        client.name,
                        client.company,
                        client.email,
                        client.domain,
                        client.current_project,
                        _format_datetime(client.created_at or datetime.now()),
                    ),
                )
                row = await cursor.fetchone()
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save client", client_id=client.id, error=str(e))
            raise DatabaseError(f"Failed to save client {client.id}: {e}") from e

        if row is None:
            raise DatabaseError(
                f"Failed to save client {client.id}: the id is already used by another owner."
            )

    async def list_clients(self, owner_id: str) -> list[ClientProfile]:
        """Get all of the owner's clients in creation order."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM clients WHERE owner_id = ? ORDER BY created_at, rowid",
                    (owner_id,),
                )
                rows = await cursor.fetchall()
                return [self._row_to_client(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to list clients", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to list clients: {e}") from e

    def _row_to_client(self, row: aiosqlite.Row) -> ClientProfile:
        """Convert a database row to a ClientProfile dataclass."""
        return ClientProfile(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            company=row["company"],
            email=row["email"],
            domain=row["domain"],
            current_project=row["current_project"],
            created_at=_parse_datetime(row["created_at"]),
        )

    # =========================================================================
    # Insight Operations
    # =========================================================================

    async def upsert_structured_insight(
        self,
        owner_id: str,
        communication_id: str,
        client_id: str | None,
        category: str,
        summary: str,
        evidence: str,
        suggested_action: str,
        confidence: float,
        raw_output: str | None,
    ) -> UpsertOutcome:
        """Insert or refresh the insight for (communication, category).

        One statement under the write lock: a concurrent run writing the
        same key converges on the last writer. created_at and feedback of
        an existing record are never touched.

        Returns:
            "inserted" or "updated"

        Raises:
            DatabaseError: If the write fails
        """
        now = datetime.now().isoformat()
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """
                    SELECT id FROM insights
                    WHERE communication_id = ? AND category = ?
                    """,
                    (communication_id, category),
                )
                existing = await cursor.fetchone()

                cursor = await db.execute(
                    """
                    INSERT INTO insights (
                        owner_id, communication_id, client_id, category,
                        summary, evidence, suggested_action, confidence,
                        raw_output, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(communication_id, category) WHERE category IS NOT NULL
                    DO UPDATE SET
                        client_id = excluded.client_id,
                        summary = excluded.summary,
                        evidence = excluded.evidence,
                        suggested_action = excluded.suggested_action,
                        confidence = excluded.confidence,
                        raw_output = excluded.raw_output,
                        updated_at = excluded.updated_at
                    WHERE insights.owner_id = excluded.owner_id
                    RETURNING id
                    """,
                    (
                        owner_id,
                        communication_id,
                        client_id,
                        category,
                        summary,
                        evidence,
                        suggested_action,
                        confidence,
                        raw_output,
                        now,
                        now,
                    ),
                )
                row = await cursor.fetchone()
                if row is None:
                    raise DatabaseError(
                        f"Insight for communication {communication_id} belongs to another owner"
                    )

        except aiosqlite.Error as e:
            logger.error(
                "Failed to upsert insight",
                communication_id=communication_id,
                category=category,
                error=str(e),
            )
            raise DatabaseError(f"Failed to upsert insight: {e}") from e

        outcome: UpsertOutcome = "updated" if existing else "inserted"
        logger.debug(
            "Insight upserted",
            insight_id=row["id"],
            communication_id=communication_id,
            category=category,
            outcome=outcome,
        )
        return outcome

    async def save_raw_insight(
        self,
        owner_id: str,
        communication_id: str,
        client_id: str | None,
        raw_output: str,
    ) -> UpsertOutcome:
        """Record model output that yielded no structured insight.

        Within one transaction: overwrite raw_output on every existing
        insight of the communication, or insert a raw-only record (NULL
        category) if there is none.

        Returns:
            "updated" if existing insights were touched, "inserted" otherwise
        """
        now = datetime.now().isoformat()
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """
                    UPDATE insights SET raw_output = ?, updated_at = ?
                    WHERE communication_id = ? AND owner_id = ?
                    """,
                    (raw_output, now, communication_id, owner_id),
                )
                if cursor.rowcount > 0:
                    outcome: UpsertOutcome = "updated"
                else:
                    await db.execute(
                        """
                        INSERT INTO insights (
                            owner_id, communication_id, client_id, category,
                            raw_output, created_at, updated_at
                        ) VALUES (?, ?, ?, NULL, ?, ?, ?)
                        """,
                        (owner_id, communication_id, client_id, raw_output, now, now),
                    )
                    outcome = "inserted"

        except aiosqlite.Error as e:
            logger.error(
                "Failed to save raw insight",
                communication_id=communication_id,
                error=str(e),
            )
            raise DatabaseError(f"Failed to save raw insight: {e}") from e

        logger.debug("Raw insight saved", communication_id=communication_id, outcome=outcome)
        return outcome

    async def get_insight(self, owner_id: str, insight_id: int) -> Insight | None:
        """Get one of the owner's insights by id."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM insights WHERE id = ? AND owner_id = ?",
                    (insight_id, owner_id),
                )
                row = await cursor.fetchone()
                return self._row_to_insight(row) if row else None

        except aiosqlite.Error as e:
            logger.error("Failed to get insight", insight_id=insight_id, error=str(e))
            raise DatabaseError(f"Failed to get insight {insight_id}: {e}") from e

    async def list_insights(
        self,
        owner_id: str,
        communication_id: str | None = None,
        limit: int = 100,
        *,
        text: str | None = None,
        category: str | None = None,
        min_confidence: float | None = None,
        created_from: datetime | None = None,
        created_before: datetime | None = None,
    ) -> list[Insight]:
        """Search the owner's insights, most recently updated first.

        Filters combine with AND; raw insights have no category or
        confidence and so never match those two filters.

        Args:
            owner_id: Owner whose insights to load
            communication_id: Restrict to one communication
            limit: Maximum number to return
            text: Case-insensitive substring of summary, evidence or
                suggested_action
            category: Exact category
            min_confidence: Lowest confidence to include
            created_from: Inclusive lower bound on created_at
            created_before: Exclusive upper bound on created_at
        """
        query = "SELECT * FROM insights WHERE owner_id = ?"
        params: list[Any] = [owner_id]

        if communication_id:
            query += " AND communication_id = ?"
            params.append(communication_id)
        if text:
            pattern = f"%{_escape_like(text)}%"
            query += (
                " AND (summary LIKE ? ESCAPE '\\' OR evidence LIKE ? ESCAPE '\\'"
                " OR suggested_action LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        if category:
            query += " AND category = ?"
            params.append(category)
        if min_confidence is not None:
            query += " AND confidence >= ?"
            params.append(min_confidence)
        if created_from is not None:
            query += " AND created_at >= ?"
            params.append(_format_bound(created_from))
        if created_before is not None:
            query += " AND created_at < ?"
            params.append(_format_bound(created_before))

        query += " ORDER BY updated_at DESC, id DESC LIMIT ?"
        params.append(limit)

        try:
            async with self._db() as db:
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [self._row_to_insight(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to list insights", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to list insights: {e}") from e

    async def set_insight_feedback(
        self,
        owner_id: str,
        insight_id: int,
        feedback: Feedback,
    ) -> bool:
        """Set the feedback field of one of the owner's insights.

        Returns:
            True if the insight was found and updated, False if the owner
            has no such insight
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE insights SET feedback = ?
                    WHERE id = ? AND owner_id = ?
                    RETURNING id
                    """,
                    (feedback, insight_id, owner_id),
                )
                row = await cursor.fetchone()
                await db.commit()
                return row is not None

        except aiosqlite.Error as e:
            logger.error("Failed to set insight feedback", insight_id=insight_id, error=str(e))
            raise DatabaseError(f"Failed to set insight feedback: {e}") from e

    def _row_to_insight(self, row: aiosqlite.Row) -> Insight:
        """Convert a database row to an Insight dataclass."""
        return Insight(
            id=row["id"],
            owner_id=row["owner_id"],
            communication_id=row["communication_id"],
            client_id=row["client_id"],
            category=row["category"],
            summary=row["summary"],
            evidence=row["evidence"],
            suggested_action=row["suggested_action"],
            confidence=row["confidence"],
            feedback=row["feedback"],
            raw_output=row["raw_output"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    # =========================================================================
    # Agent State Operations
    # =========================================================================

    async def get_state(self, key: str) -> str | None:
        """Get an agent state value.

        Args:
            key: State key

        Returns:
            State value or None if not found
        """
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT value FROM agent_state WHERE key = ?", (key,))
                row = await cursor.fetchone()
                return row["value"] if row else None

        except aiosqlite.Error as e:
            logger.error("Failed to get state", key=key, error=str(e))
            raise DatabaseError(f"Failed to get state: {e}") from e

    async def set_state(self, key: str, value: str) -> None:
        """Set an agent state value."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO agent_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.now().isoformat()),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to set state", key=key, error=str(e))
            raise DatabaseError(f"Failed to set state: {e}") from e

    # =========================================================================
    # LLM Request Log Operations
    # =========================================================================

    async def log_llm_request(
        self,
        task_type: str,
        model: str,
        prompt: dict[str, Any] | list[dict[str, Any]],
        response: dict[str, Any] | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        duration_ms: int | None = None,
        communication_id: str | None = None,
        error: str | None = None,
    ) -> int:
        """Log an LLM request for debugging.

        The current pipeline run's correlation id is recorded with the entry.

        Args:
            task_type: 'insights' or 'attribution'
            model: Model string used
            prompt: The prompt sent to Claude
            response: The response from Claude
            input_tokens: Input token count
            output_tokens: Output token count
            duration_ms: Request duration in milliseconds
            communication_id: Associated communication (if applicable)
            error: Error message (if failed)

        Returns:
            The log entry ID
        """
        try:
            insight_run_id = get_correlation_id()

            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO llm_request_log (
                        timestamp, task_type, model, communication_id, insight_run_id,
                        prompt_json, response_json,
                        input_tokens, output_tokens, duration_ms, error
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        datetime.now().isoformat(),
                        task_type,
                        model,
                        communication_id,
                        insight_run_id,
                        json.dumps(prompt),
                        json.dumps(response) if response else None,
                        input_tokens,
                        output_tokens,
                        duration_ms,
                        error,
                    ),
                )
                await db.commit()
                return cursor.lastrowid

        except aiosqlite.Error as e:
            logger.error("Failed to log LLM request", task_type=task_type, error=str(e))
            raise DatabaseError(f"Failed to log LLM request: {e}") from e

    async def list_llm_requests(
        self,
        limit: int = 20,
        *,
        communication_id: str | None = None,
        insight_run_id: str | None = None,
        failed_only: bool = False,
    ) -> list[LLMLogEntry]:
        """Most recent LLM request log entries first."""
        clauses: list[str] = []
        params: list[Any] = []
        if communication_id:
            clauses.append("communication_id = ?")
            params.append(communication_id)
        if insight_run_id:
            clauses.append("insight_run_id = ?")
            params.append(insight_run_id)
        if failed_only:
            clauses.append("error IS NOT NULL")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    f"SELECT * FROM llm_request_log {where} ORDER BY timestamp DESC, id DESC LIMIT ?",
                    [*params, limit],
                )
                return [self._row_to_llm_log(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("Failed to list LLM requests", error=str(e))
            raise DatabaseError(f"Failed to list LLM requests: {e}") from e

    async def prune_llm_logs(self, retention_days: int) -> int:
        """Delete LLM logs older than the retention period.

        Returns:
            Number of entries deleted
        """
        try:
            cutoff = datetime.now() - timedelta(days=retention_days)

            async with self._db() as db:
                cursor = await db.execute(
                    "DELETE FROM llm_request_log WHERE timestamp < ?",
                    (cutoff.isoformat(),),
                )
                await db.commit()

                deleted = cursor.rowcount
                if deleted:
                    logger.info(
                        "Pruned LLM logs",
                        deleted=deleted,
                        retention_days=retention_days,
                    )
                return deleted

        except aiosqlite.Error as e:
            logger.error("Failed to prune LLM logs", error=str(e))
            raise DatabaseError(f"Failed to prune LLM logs: {e}") from e

    def _row_to_llm_log(self, row: aiosqlite.Row) -> LLMLogEntry:
        return LLMLogEntry(
            id=row["id"],
            timestamp=_parse_datetime(row["timestamp"]),
            task_type=row["task_type"],
            model=row["model"],
            communication_id=row["communication_id"],
            insight_run_id=row["insight_run_id"],
            prompt_json=_load_json_column(row["prompt_json"]),
            response_json=_load_json_column(row["response_json"]),
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            duration_ms=row["duration_ms"],
            error=row["error"],
        )
