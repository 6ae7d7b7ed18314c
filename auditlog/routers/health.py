"""
Health check and monitoring endpoints.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from auditlog.config import Settings
from auditlog.dependencies import get_app_settings, get_store
from auditlog.models import HealthStatus
from auditlog.services.store import EventStore, StoreUnavailableError

router = APIRouter(tags=["monitoring"])

# Track application start time
START_TIME = time.time()


async def _store_available(store: EventStore) -> bool:
    try:
        return await store.exists()
    except StoreUnavailableError:
        return False


@router.get("/health", response_model=HealthStatus)
async def health_check(
    store: EventStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings)
):
    """
    Health check endpoint.

    Returns the overall health status of the service including:
    - Audit store availability
    - Service uptime
    - Application version

    A degraded store is reported as unhealthy, but the service keeps
    accepting requests.
    """
    available = await _store_available(store)

    return HealthStatus(
        status="healthy" if available else "unhealthy",
        version=settings.app_version,
        storage="available" if available else "unavailable",
        uptime_seconds=time.time() - START_TIME,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes liveness probe.

    Simple check that the application is running.
    Does not check dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(store: EventStore = Depends(get_store)):
    """
    Kubernetes readiness probe.

    Checks that the audit store is provisioned and reachable.
    """
    if not await _store_available(store):
        return Response(
            content='{"status": "not ready", "reason": "audit store unavailable"}',
            status_code=503,
            media_type="application/json"
        )

    return {"status": "ready"}


@router.get("/metrics")
async def metrics(settings: Settings = Depends(get_app_settings)):
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format including:
    - Event write and failure counts
    - Retention deletions
    - Notification delivery counts
    - Query latency
    """
    if not settings.enable_metrics:
        return Response(status_code=404)

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get("/info")
async def info(settings: Settings = Depends(get_app_settings)):
    """
    Service information endpoint.

    Returns basic information about the running service.
    """
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "uptime_seconds": time.time() - START_TIME
    }
