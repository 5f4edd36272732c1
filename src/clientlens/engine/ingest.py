"""Ingestion of communications from a mail source into the store.

A CommunicationSource yields InboundCommunication records for an owner.
The ingestor sanitizes them (storage profile for bodies, short-field
profile for subjects), normalizes address headers, and upserts them on
(owner_id, provider_id), so re-importing the same export is harmless.

JsonFileSource reads an export file of the form:

    {
      "clients": [
        {"name": "Alice", "company": "Acme", "email": "alice@acme.com",
         "domain": "acme.com", "current_project": "Website"}
      ],
      "communications": [
        {"id": "msg-1", "thread_id": "t-1", "from": "Alice <alice@acme.com>",
         "to": "me@example.com", "subject": "Budget", "body": "...",
         "date": "2025-03-01T10:00:00Z"}
      ]
    }

Usage:
    from clientlens.engine.ingest import CommunicationIngestor, JsonFileSource

    source = JsonFileSource("export.json")
    ingestor = CommunicationIngestor(store, sanitizer)
    result = await ingestor.ingest("owner-1", source)
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import getaddresses, parsedate_to_datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from clientlens.analysis.sanitizer import sanitize_text
from clientlens.core.errors import DatabaseError, SourceError
from clientlens.core.logging import get_logger
from clientlens.db.store import ClientProfile, Communication, new_id

if TYPE_CHECKING:
    from clientlens.analysis.sanitizer import ContentSanitizer
    from clientlens.db.store import DatabaseStore

logger = get_logger(__name__)

SUBJECT_MAX_LENGTH = 1000


@dataclass(frozen=True, slots=True)
class InboundCommunication:
    """A message as delivered by a source, before sanitization."""

    provider_id: str
    thread_id: str | None = None
    sender: str | None = None
    recipient: str | None = None
    subject: str | None = None
    body: str | None = None
    sent_at: datetime | None = None


class CommunicationSource(Protocol):
    """Anything that can deliver an owner's messages."""

    async def fetch(
        self,
        owner_id: str,
        since: datetime | None = None,
    ) -> list[InboundCommunication]: ...


@dataclass
class IngestResult:
    """Counts for one ingestion."""

    fetched: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    clients_saved: int = 0


def parse_address(header: str | None) -> str | None:
    """Extract the first bare address from a header like 'Name <a@b.com>'.

    Returns:
        Lowercased address, or None if the header holds none
    """
    if not header:
        return None
    for _name, address in getaddresses([header]):
        address = address.strip().lower()
        if "@" in address:
            return address
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 or RFC 2822 timestamp into an aware UTC datetime.

    Naive timestamps are taken to be UTC.

    Raises:
        ValueError: The value is not a recognizable timestamp
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Unrecognized timestamp '{value}'") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def stable_client_id(owner_id: str, name: str, email: str | None) -> str:
    """Deterministic id for exported clients that carry none."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"clientlens:{owner_id}:{name}:{email or ''}"))


class JsonFileSource:
    """CommunicationSource backed by a JSON export file.

    Attributes:
        path: Export file path
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise SourceError(f"Export file not found: {self.path}") from e
        except json.JSONDecodeError as e:
            raise SourceError(
                f"Invalid JSON in export file {self.path}: line {e.lineno}, column {e.colno}. "
                f"Error: {e.msg}"
            ) from e

        if not isinstance(data, dict):
            raise SourceError(
                f"Export file {self.path} must contain a JSON object with "
                "'clients' and/or 'communications' lists."
            )
        for key in ("clients", "communications"):
            if not isinstance(data.get(key, []), list):
                raise SourceError(f"'{key}' in export file {self.path} must be a list.")

        self._data = data
        return data

    async def fetch(
        self,
        owner_id: str,
        since: datetime | None = None,
    ) -> list[InboundCommunication]:
        """Read communications from the export, optionally only those sent since a time.

        Records without a usable message id are returned with an empty
        provider_id so the ingestor can count them as skipped.
        """
        records = []
        for raw in self._load().get("communications", []):
            if not isinstance(raw, dict):
                records.append(InboundCommunication(provider_id=""))
                continue

            try:
                sent_at = parse_timestamp(raw.get("date") or raw.get("sent_at"))
            except ValueError as e:
                logger.warning("ingest_bad_timestamp", provider_id=raw.get("id"), error=str(e))
                sent_at = None

            if since is not None and sent_at is not None and sent_at < since:
                continue

            records.append(
                InboundCommunication(
                    provider_id=str(raw.get("id") or raw.get("provider_id") or ""),
                    thread_id=raw.get("thread_id"),
                    sender=raw.get("from") or raw.get("sender"),
                    recipient=raw.get("to") or raw.get("recipient"),
                    subject=raw.get("subject"),
                    body=raw.get("body"),
                    sent_at=sent_at,
                )
            )
        return records

    def load_clients(self, owner_id: str) -> list[ClientProfile]:
        """Read client records from the export.

        Raises:
            SourceError: A client record has no name
        """
        clients = []
        for index, raw in enumerate(self._load().get("clients", [])):
            if not isinstance(raw, dict) or not raw.get("name"):
                raise SourceError(f"Client #{index + 1} in {self.path} needs a 'name'.")

            email = parse_address(raw.get("email"))
            domain = (raw.get("domain") or "").strip().lower() or None
            clients.append(
                ClientProfile(
                    id=str(raw.get("id") or stable_client_id(owner_id, raw["name"], email)),
                    owner_id=owner_id,
                    name=raw["name"],
                    company=raw.get("company"),
                    email=email,
                    domain=domain,
                    current_project=raw.get("current_project"),
                )
            )
        return clients


class CommunicationIngestor:
    """Sanitizes and stores communications from a source.

    Attributes:
        _store: DatabaseStore for persistence
        _sanitizer: Storage-profile sanitizer
    """

    def __init__(self, store: DatabaseStore, sanitizer: ContentSanitizer):
        self._store = store
        self._sanitizer = sanitizer

    def to_communication(self, owner_id: str, inbound: InboundCommunication) -> Communication:
        return Communication(
            id=new_id(),
            owner_id=owner_id,
            provider_id=inbound.provider_id,
            thread_id=inbound.thread_id or None,
            sender_email=parse_address(inbound.sender),
            recipient_email=parse_address(inbound.recipient),
            subject=sanitize_text(inbound.subject, max_length=SUBJECT_MAX_LENGTH),
            body=self._sanitizer.for_storage(inbound.body),
            sent_at=inbound.sent_at,
        )

    async def ingest(
        self,
        owner_id: str,
        source: CommunicationSource,
        since: datetime | None = None,
    ) -> IngestResult:
        """Fetch from a source and upsert every usable message.

        One failed record does not abort the batch. Errors raised by the
        source itself propagate.

        Args:
            owner_id: Owner the messages belong to
            source: Where to fetch from
            since: Passed through to the source

        Returns:
            IngestResult with counts
        """
        result = IngestResult()
        inbound_records = await source.fetch(owner_id, since)
        result.fetched = len(inbound_records)

        for inbound in inbound_records:
            if not inbound.provider_id:
                result.skipped += 1
                logger.warning("ingest_record_skipped", reason="missing message id")
                continue

            try:
                await self._store.save_communication(self.to_communication(owner_id, inbound))
                result.saved += 1
            except DatabaseError as e:
                result.failed += 1
                logger.error(
                    "ingest_record_failed",
                    provider_id=inbound.provider_id,
                    error=str(e),
                )

        logger.info(
            "ingest_complete",
            owner_id=owner_id,
            fetched=result.fetched,
            saved=result.saved,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def import_clients(self, clients: list[ClientProfile], result: IngestResult) -> None:
        """Save client records, counting them into result."""
        for client in clients:
            await self._store.save_client(client)
            result.clients_saved += 1
