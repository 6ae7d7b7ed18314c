"""
Query engine: filtered, paginated, most-recent-first event listing.
"""

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from prometheus_client import Histogram
from pydantic import BaseModel

from auditlog.models import EventFilters, EventPage, Severity
from auditlog.services.store import EventStore, StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100

# Filter values the admin UI sends to mean "no filter".
WILDCARD_VALUES = {"", "all"}

query_duration = Histogram(
    'audit_query_seconds',
    'Event query duration'
)


class EventQuery(BaseModel):
    """Raw query parameters as received from the API."""

    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    type: Optional[str] = None
    severity: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _wildcard(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip().lower() in WILDCARD_VALUES:
        return None
    return value.strip()


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date (or the date part of an ISO datetime); None if invalid."""
    value = _wildcard(value)
    if value is None:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.debug(f"Ignoring unparsable date filter: {value!r}")
        return None


def total_pages_for(total: int, per_page: int) -> int:
    """Number of pages; an empty result still has one (empty) page."""
    return max(1, math.ceil(total / per_page))


def build_filters(query: EventQuery) -> EventFilters:
    """Turn raw parameters into store filters; invalid values are dropped."""
    severity = _wildcard(query.severity)
    parsed_severity = Severity.parse(severity)
    if severity and parsed_severity is None:
        logger.debug(f"Ignoring unknown severity filter: {severity!r}")

    day_from = parse_day(query.date_from)
    day_to = parse_day(query.date_to)

    return EventFilters(
        type=_wildcard(query.type),
        severity=parsed_severity,
        search=_wildcard(query.search),
        start_time=(
            datetime.combine(day_from, time.min, tzinfo=timezone.utc) if day_from else None
        ),
        # Inclusive of the whole ``date_to`` day.
        end_before=(
            datetime.combine(day_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
            if day_to else None
        ),
    )


class QueryEngine:
    """Answer paginated, filtered queries against an event store."""

    def __init__(self, store: EventStore):
        self.store = store

    async def search(self, query: EventQuery) -> EventPage:
        """
        Run a query.

        ``page`` and ``per_page`` are clamped into range rather than
        rejected. A page past the end yields no items but accurate totals.
        If the store is unavailable an empty page flagged ``degraded`` is
        returned.
        """
        page = max(DEFAULT_PAGE, query.page)
        per_page = clamp(query.per_page, 1, MAX_PER_PAGE)
        filters = build_filters(query)

        try:
            with query_duration.time():
                total = await self.store.count(filters)
                total_pages = total_pages_for(total, per_page)
                # No fetch for pages past the end
                items = await self.store.fetch(
                    filters,
                    limit=per_page,
                    offset=(page - 1) * per_page
                ) if total and page <= total_pages else []
        except StoreUnavailableError as e:
            logger.warning(f"Query served degraded, store unavailable: {e}")
            return EventPage(
                items=[],
                total=0,
                total_pages=1,
                page=page,
                per_page=per_page,
                degraded=True
            )

        return EventPage(
            items=items,
            total=total,
            total_pages=total_pages,
            page=page,
            per_page=per_page
        )
