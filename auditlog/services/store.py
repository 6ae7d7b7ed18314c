"""
Event store backends.

The store is the only shared mutable resource of the service. Events are
appended once, never updated, and removed only by predicate (retention).
Identifiers and timestamps are assigned here, not by callers.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import asyncpg

from auditlog.database import Database
from auditlog.models import (
    EventFilters, EventRecord, EventSummary, NewEvent, Severity
)

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The underlying storage is not provisioned or not reachable."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Pool not connected surfaces as RuntimeError from Database.pool.
STORAGE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    asyncio.TimeoutError,
    OSError,
    RuntimeError,
)


@asynccontextmanager
async def unavailable_on_failure(operation: str):
    """Translate driver and connection errors into StoreUnavailableError."""
    try:
        yield
    except STORAGE_ERRORS as e:
        raise StoreUnavailableError(f"{operation} failed: {e}") from e


class EventStore(ABC):
    """Durable append / delete-by-predicate / query interface."""

    @abstractmethod
    async def exists(self) -> bool:
        """Whether the storage object has been provisioned."""

    @abstractmethod
    async def append(self, event: NewEvent) -> EventRecord:
        """Insert one event and return it with its assigned id and timestamp."""

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Remove all events with ``timestamp < cutoff``; return how many."""

    @abstractmethod
    async def count(self, filters: EventFilters) -> int:
        """Count events matching the filters."""

    @abstractmethod
    async def fetch(self, filters: EventFilters, limit: int, offset: int) -> List[EventRecord]:
        """Matching events, most recent first (timestamp DESC, id DESC)."""

    @abstractmethod
    async def get(self, event_id: int) -> Optional[EventRecord]:
        """A single event by id."""

    @abstractmethod
    async def summary(self, since: datetime) -> EventSummary:
        """Aggregate counts overall and since a cutoff."""


# ============================================================================
# PostgreSQL
# ============================================================================

EVENT_COLUMNS = "id, event_type, message, severity, source_address, actor, timestamp_utc"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_filter_clause(filters: EventFilters) -> Tuple[str, List[Any]]:
    """
    Build a parameterised WHERE clause for the given filters.

    Returns:
        The clause body (``1=1`` when unfiltered) and its positional params
    """
    conditions = []
    params: List[Any] = []
    param_count = 0

    if filters.type:
        param_count += 1
        conditions.append(f"event_type = ${param_count}")
        params.append(filters.type)

    if filters.severity:
        param_count += 1
        conditions.append(f"severity = ${param_count}")
        params.append(filters.severity.value)

    if filters.search:
        param_count += 1
        conditions.append(
            f"(message ILIKE ${param_count} OR event_type ILIKE ${param_count} "
            f"OR actor ILIKE ${param_count})"
        )
        params.append(f"%{escape_like(filters.search)}%")

    if filters.start_time:
        param_count += 1
        conditions.append(f"timestamp_utc >= ${param_count}")
        params.append(filters.start_time)

    if filters.end_before:
        param_count += 1
        conditions.append(f"timestamp_utc < ${param_count}")
        params.append(filters.end_before)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    return where_clause, params


def _row_to_record(row) -> EventRecord:
    return EventRecord(
        id=row['id'],
        type=row['event_type'],
        message=row['message'],
        severity=Severity.coerce(row['severity']),
        timestamp=row['timestamp_utc'],
        source_address=row['source_address'],
        actor=row['actor'],
    )


class PostgresEventStore(EventStore):
    """Event store backed by the ``audit_events`` table."""

    table_name = "audit_events"

    def __init__(self, db: Database):
        self.db = db

    async def exists(self) -> bool:
        async with unavailable_on_failure("exists"):
            if not await self.db.ensure_connected():
                return False
            return bool(await self.db.fetchval(
                "SELECT to_regclass($1) IS NOT NULL",
                self.table_name
            ))

    async def append(self, event: NewEvent) -> EventRecord:
        async with unavailable_on_failure("append"):
            row = await self.db.fetchrow(
                f"""
                INSERT INTO audit_events (
                    event_type, message, severity, source_address, actor
                ) VALUES ($1, $2, $3, $4, $5)
                RETURNING {EVENT_COLUMNS}
                """,
                event.type,
                event.message,
                event.severity.value,
                event.source_address,
                event.actor
            )
        return _row_to_record(row)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with unavailable_on_failure("delete_older_than"):
            status = await self.db.execute(
                "DELETE FROM audit_events WHERE timestamp_utc < $1",
                cutoff
            )
        # asyncpg returns the command tag, e.g. "DELETE 42"
        return int(status.split()[-1])

    async def count(self, filters: EventFilters) -> int:
        where_clause, params = build_filter_clause(filters)
        async with unavailable_on_failure("count"):
            return await self.db.fetchval(
                f"SELECT COUNT(*) FROM audit_events WHERE {where_clause}",
                *params
            )

    async def fetch(self, filters: EventFilters, limit: int, offset: int) -> List[EventRecord]:
        where_clause, params = build_filter_clause(filters)
        param_count = len(params)
        query = f"""
            SELECT {EVENT_COLUMNS}
            FROM audit_events
            WHERE {where_clause}
            ORDER BY timestamp_utc DESC, id DESC
            LIMIT ${param_count + 1} OFFSET ${param_count + 2}
        """
        async with unavailable_on_failure("fetch"):
            rows = await self.db.fetch(query, *params, limit, offset)
        return [_row_to_record(r) for r in rows]

    async def get(self, event_id: int) -> Optional[EventRecord]:
        async with unavailable_on_failure("get"):
            row = await self.db.fetchrow(
                f"SELECT {EVENT_COLUMNS} FROM audit_events WHERE id = $1",
                event_id
            )
        return _row_to_record(row) if row else None

    async def summary(self, since: datetime) -> EventSummary:
        async with unavailable_on_failure("summary"):
            total = await self.db.fetchval("SELECT COUNT(*) FROM audit_events")

            recent = await self.db.fetchval(
                "SELECT COUNT(*) FROM audit_events WHERE timestamp_utc >= $1",
                since
            )

            by_severity = await self.db.fetch(
                """
                SELECT severity, COUNT(*) AS count
                FROM audit_events
                WHERE timestamp_utc >= $1
                GROUP BY severity
                """,
                since
            )

            by_type = await self.db.fetch(
                """
                SELECT event_type, COUNT(*) AS count
                FROM audit_events
                WHERE timestamp_utc >= $1
                GROUP BY event_type
                ORDER BY count DESC
                LIMIT 10
                """,
                since
            )

        severities = {s.value: 0 for s in Severity}
        for row in by_severity:
            severities[row['severity']] = row['count']

        return EventSummary(
            total_events=total,
            events_since=recent,
            since=since,
            by_severity=severities,
            by_type=[{"type": r['event_type'], "count": r['count']} for r in by_type]
        )


# ============================================================================
# In-memory
# ============================================================================

class InMemoryEventStore(EventStore):
    """
    Process-local event store.

    Used for local runs without PostgreSQL and by the test-suite. The clock is
    injectable so events can be written "in the past".
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utcnow
        self.provisioned = True
        self._events: Dict[int, EventRecord] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def _require(self, operation: str) -> None:
        if not self.provisioned:
            raise StoreUnavailableError(f"{operation} failed: store is not provisioned")

    @staticmethod
    def _matches(event: EventRecord, filters: EventFilters) -> bool:
        if filters.type and event.type != filters.type:
            return False
        if filters.severity and event.severity != filters.severity:
            return False
        if filters.search:
            needle = filters.search.lower()
            haystack = (event.message, event.type, event.actor)
            if not any(needle in field.lower() for field in haystack):
                return False
        if filters.start_time and event.timestamp < filters.start_time:
            return False
        if filters.end_before and event.timestamp >= filters.end_before:
            return False
        return True

    async def exists(self) -> bool:
        return self.provisioned

    async def append(self, event: NewEvent) -> EventRecord:
        self._require("append")
        async with self._lock:
            record = EventRecord(
                id=self._next_id,
                timestamp=self.clock(),
                **event.model_dump()
            )
            self._events[record.id] = record
            self._next_id += 1
        return record

    async def delete_older_than(self, cutoff: datetime) -> int:
        self._require("delete_older_than")
        async with self._lock:
            expired = [i for i, e in self._events.items() if e.timestamp < cutoff]
            for event_id in expired:
                del self._events[event_id]
        return len(expired)

    async def count(self, filters: EventFilters) -> int:
        self._require("count")
        return sum(1 for e in self._events.values() if self._matches(e, filters))

    async def fetch(self, filters: EventFilters, limit: int, offset: int) -> List[EventRecord]:
        self._require("fetch")
        matching = [e for e in self._events.values() if self._matches(e, filters)]
        matching.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return matching[offset:offset + limit]

    async def get(self, event_id: int) -> Optional[EventRecord]:
        self._require("get")
        return self._events.get(event_id)

    async def summary(self, since: datetime) -> EventSummary:
        self._require("summary")
        recent = [e for e in self._events.values() if e.timestamp >= since]

        severities = {s.value: 0 for s in Severity}
        for event in recent:
            severities[event.severity.value] += 1

        by_type = Counter(e.type for e in recent).most_common(10)

        return EventSummary(
            total_events=len(self._events),
            events_since=len(recent),
            since=since,
            by_severity=severities,
            by_type=[{"type": t, "count": c} for t, c in by_type]
        )
