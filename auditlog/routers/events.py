"""
Audit event endpoints - write, query and purge under /v1/events
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from auditlog.auth import User, get_admin_user_or_token, get_optional_user
from auditlog.config import Settings
from auditlog.dependencies import (
    get_app_settings, get_query_engine, get_store, get_sweeper, get_writer
)
from auditlog.models import (
    GUEST_ACTOR, EventPage, EventRecord, EventResponse, EventSubmission, PurgeResult
)
from auditlog.network import resolve_client_ip
from auditlog.services.query import DEFAULT_PAGE, DEFAULT_PER_PAGE, EventQuery, QueryEngine
from auditlog.services.store import EventStore, StoreUnavailableError
from auditlog.services.sweeper import RetentionSweeper
from auditlog.services.writer import EventWriter, RequestContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["events"])


async def get_request_context(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    settings: Settings = Depends(get_app_settings)
) -> RequestContext:
    """Client address and actor of the current request."""
    remote_addr = request.client.host if request.client else None
    return RequestContext(
        source_address=resolve_client_ip(
            request.headers,
            remote_addr,
            trust_proxy_headers=settings.trust_proxy_headers
        ),
        actor=user.username if user else GUEST_ACTOR,
    )


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def submit_event(
    submission: EventSubmission,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    writer: EventWriter = Depends(get_writer)
):
    """
    Record a security event.

    **Request Body:**
    - `type`: Category tag, e.g. `login_failed`
    - `message`: Human-readable description
    - `severity`: `info`, `warning` or `error` (anything else is stored as `info`)

    The client address and the acting user are taken from the request, not
    from the body.

    **Returns:**
    - `201` with the assigned `id`
    - `202` with `status: degraded` when the audit store is unavailable;
      the event was not stored
    """
    record = await writer.log(
        submission.type,
        submission.message,
        submission.severity,
        context=context
    )

    if record is None:
        response.status_code = status.HTTP_202_ACCEPTED
        return EventResponse(status="degraded")

    return EventResponse(status="accepted", id=record.id)


@router.get("/events", response_model=EventPage)
async def list_events(
    page: int = DEFAULT_PAGE,
    per_page: int = DEFAULT_PER_PAGE,
    event_type: Optional[str] = Query(default=None, alias="type"),
    severity: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    engine: QueryEngine = Depends(get_query_engine)
):
    """
    List audit events, most recent first.

    **Query Parameters:**
    - `page`: Page number, from 1 (default: 1)
    - `per_page`: Page size, 1-100 (default: 20); out-of-range values are clamped
    - `type`: Exact event type
    - `severity`: `info`, `warning` or `error`
    - `search`: Case-insensitive substring of message, type or actor
    - `date_from`, `date_to`: Inclusive day bounds (`YYYY-MM-DD`, UTC)

    `all` or an empty value disables a filter. When the store is
    unavailable the response is an empty page with `degraded: true`.
    """
    return await engine.search(EventQuery(
        page=page,
        per_page=per_page,
        type=event_type,
        severity=severity,
        search=search,
        date_from=date_from,
        date_to=date_to,
    ))


@router.get("/events/{event_id}", response_model=EventRecord)
async def get_event(
    event_id: int,
    store: EventStore = Depends(get_store)
):
    """Retrieve a single audit event by ID."""
    try:
        event = await store.get(event_id)
    except StoreUnavailableError as e:
        logger.warning(f"Event lookup failed: {e}")
        raise HTTPException(status_code=503, detail="Audit store unavailable")

    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")

    return event


@router.delete("/events", response_model=PurgeResult)
async def purge_events(
    before: datetime,
    current_user: User = Depends(get_admin_user_or_token),
    sweeper: RetentionSweeper = Depends(get_sweeper)
):
    """
    Delete every event older than `before`.

    **Authentication:** Bearer token (admin) or X-Admin-Token

    **Query Parameters:**
    - `before`: ISO 8601 timestamp; naive values are taken as UTC
    """
    if before.tzinfo is None:
        before = before.replace(tzinfo=timezone.utc)

    try:
        deleted = await sweeper.purge_before(before, trigger="manual")
    except StoreUnavailableError as e:
        logger.warning(f"Manual purge skipped, store unavailable: {e}")
        return PurgeResult(deleted=0, before=before, degraded=True)

    logger.info(f"Manual purge by {current_user.username}: {deleted} events before {before.isoformat()}")
    return PurgeResult(deleted=deleted, before=before)
