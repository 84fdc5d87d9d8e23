"""
Durable audit store - opaque key/value access to webhook_events keyed by event id.

All writes are upserts on the primary key, so concurrent writes for the same id
converge (last write wins on non-key fields). insert_if_absent uses the primary
key constraint as the first-writer-wins arbiter for concurrent duplicates.
"""
import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from hookgate.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


WRITABLE_FIELDS = (
    "source",
    "event_type",
    "payload",
    "payload_hash",
    "processed",
    "processed_at",
    "error",
    "correlation_id",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; every timestamp we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _filter_fields(fields: dict) -> dict:
    unknown = set(fields) - set(WRITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown webhook event fields: {', '.join(sorted(unknown))}")
    return dict(fields)


class EventStore(Protocol):
    async def upsert(self, event_id: str, fields: dict) -> dict: ...

    async def find_by_id(self, event_id: str) -> Optional[dict]: ...

    async def insert_if_absent(self, event_id: str, fields: dict) -> bool: ...

    async def record_attempt(self, event_id: str) -> None: ...


class SqlAlchemyEventStore:
    """EventStore over the webhook_events table (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _insert(session):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")
        return insert(WebhookEvent)

    @staticmethod
    def _to_record(row: WebhookEvent) -> dict:
        record = row.to_dict()
        for key in ("processed_at", "created_at", "updated_at"):
            record[key] = _aware(record[key])
        return record

    async def upsert(self, event_id: str, fields: dict) -> dict:
        values = _filter_fields(fields)
        now = _utcnow()
        async with self._session_factory() as session:
            stmt = self._insert(session).values(
                id=event_id, created_at=now, updated_at=now, **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[WebhookEvent.id],
                set_={**values, "updated_at": now},
            )
            await session.execute(stmt)
            await session.commit()
            row = await session.get(WebhookEvent, event_id, populate_existing=True)
            return self._to_record(row)

    async def find_by_id(self, event_id: str) -> Optional[dict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEvent).where(WebhookEvent.id == event_id)
            )
            row = result.scalar_one_or_none()
            return self._to_record(row) if row is not None else None

    async def insert_if_absent(self, event_id: str, fields: dict) -> bool:
        values = _filter_fields(fields)
        now = _utcnow()
        async with self._session_factory() as session:
            stmt = self._insert(session).values(
                id=event_id, created_at=now, updated_at=now, **values,
            ).on_conflict_do_nothing(index_elements=[WebhookEvent.id])
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def record_attempt(self, event_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == event_id)
                .values(attempts=WebhookEvent.attempts + 1, updated_at=_utcnow())
            )
            await session.commit()


class InMemoryEventStore:
    """Dict-backed EventStore for tests and local runs without a database."""

    def __init__(self):
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rows)

    @staticmethod
    def _new_row(event_id: str, values: dict, now: datetime) -> dict:
        row = {
            "id": event_id,
            "source": None,
            "event_type": None,
            "payload": None,
            "payload_hash": None,
            "processed": False,
            "processed_at": None,
            "error": None,
            "attempts": 0,
            "correlation_id": None,
            "created_at": now,
            "updated_at": now,
        }
        row.update(copy.deepcopy(values))
        return row

    async def upsert(self, event_id: str, fields: dict) -> dict:
        values = _filter_fields(fields)
        now = _utcnow()
        async with self._lock:
            row = self._rows.get(event_id)
            if row is None:
                row = self._new_row(event_id, values, now)
                self._rows[event_id] = row
            else:
                row.update(copy.deepcopy(values))
                row["updated_at"] = now
            return copy.deepcopy(row)

    async def find_by_id(self, event_id: str) -> Optional[dict]:
        async with self._lock:
            row = self._rows.get(event_id)
            return copy.deepcopy(row) if row is not None else None

    async def insert_if_absent(self, event_id: str, fields: dict) -> bool:
        values = _filter_fields(fields)
        async with self._lock:
            if event_id in self._rows:
                return False
            self._rows[event_id] = self._new_row(event_id, values, _utcnow())
            return True

    async def record_attempt(self, event_id: str) -> None:
        async with self._lock:
            row = self._rows.get(event_id)
            if row is not None:
                row["attempts"] += 1
                row["updated_at"] = _utcnow()
