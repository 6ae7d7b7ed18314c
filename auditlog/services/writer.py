"""
Event writer.

Accepts (type, message, severity) from callers, enriches it with the
request's client address and actor, appends it to the store and hands the
stored event to the post-write dispatcher. Storage problems never propagate
to the caller: the security action that triggered the write must not fail
because the audit log is degraded.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from prometheus_client import Counter

from auditlog.models import (
    GUEST_ACTOR, MAX_ACTOR_LENGTH, MAX_ADDRESS_LENGTH, NULL_ADDRESS,
    EventRecord, NewEvent, Severity
)
from auditlog.services.dispatcher import EventDispatcher
from auditlog.services.store import EventStore, StoreUnavailableError

logger = logging.getLogger(__name__)

events_written = Counter(
    'audit_events_written_total',
    'Total events written',
    ['event_type', 'severity']
)
events_write_failed = Counter(
    'audit_events_write_failed_total',
    'Total events that could not be written',
    ['reason']
)


@dataclass(frozen=True)
class RequestContext:
    """Environment-derived fields attached to every event."""

    source_address: str = NULL_ADDRESS
    actor: str = GUEST_ACTOR


def _fit_address(address: Optional[str]) -> str:
    """An address that does not fit the column is recorded as unknown."""
    if not address or len(address) > MAX_ADDRESS_LENGTH:
        return NULL_ADDRESS
    return address


class EventWriter:
    """Append enriched events to the store and publish them after the write."""

    def __init__(self, store: EventStore, dispatcher: Optional[EventDispatcher] = None):
        self.store = store
        self.dispatcher = dispatcher

    async def log(
        self,
        event_type: str,
        message: str,
        severity: Any = None,
        context: Optional[RequestContext] = None
    ) -> Optional[EventRecord]:
        """
        Write one audit event.

        Args:
            event_type: Category tag (non-empty)
            message: Human-readable description
            severity: info, warning or error; anything else is stored as info
            context: Client address and actor; anonymous defaults when omitted

        Returns:
            The stored event, or None if the store is unavailable
        """
        if not event_type:
            raise ValueError("event_type must be a non-empty string")

        context = context or RequestContext()
        event = NewEvent(
            type=event_type,
            message=message or "",
            severity=Severity.coerce(severity),
            source_address=_fit_address(context.source_address),
            actor=(context.actor or GUEST_ACTOR)[:MAX_ACTOR_LENGTH],
        )

        try:
            if not await self.store.exists():
                logger.error(
                    "Audit log table does not exist; event dropped "
                    f"(type={event.type}, severity={event.severity.value})"
                )
                events_write_failed.labels(reason="not_provisioned").inc()
                return None

            record = await self.store.append(event)
        except StoreUnavailableError as e:
            logger.error(f"Audit store unavailable; event dropped (type={event.type}): {e}")
            events_write_failed.labels(reason="unavailable").inc()
            return None

        events_written.labels(
            event_type=record.type,
            severity=record.severity.value
        ).inc()
        logger.info(
            f"Event stored: id={record.id}, type={record.type}, "
            f"severity={record.severity.value}, actor={record.actor}"
        )

        if self.dispatcher is not None:
            self.dispatcher.publish(record)

        return record
