"""
Admin endpoints for runtime configuration, retention and statistics.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from auditlog.auth import User, get_admin_user_or_token
from auditlog.dependencies import get_config_provider, get_store, get_sweeper
from auditlog.models import AuditConfig, AuditConfigUpdate, EventSummary, SweepResult
from auditlog.services.config_store import ConfigProvider
from auditlog.services.store import EventStore, StoreUnavailableError, utcnow
from auditlog.services.sweeper import RetentionSweeper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


# ============================================================================
# Runtime Configuration
# ============================================================================

@router.get("/settings", response_model=AuditConfig)
async def get_settings(
    current_user: User = Depends(get_admin_user_or_token),
    config: ConfigProvider = Depends(get_config_provider)
):
    """
    Current retention policy and notification rule.

    **Authentication:** Bearer token (admin) or X-Admin-Token
    """
    return config.current


@router.put("/settings", response_model=AuditConfig)
async def update_settings(
    update: AuditConfigUpdate,
    current_user: User = Depends(get_admin_user_or_token),
    config: ConfigProvider = Depends(get_config_provider)
):
    """
    Update the retention policy and/or notification rule.

    **Authentication:** Bearer token (admin) or X-Admin-Token

    Omitted fields keep their current value. The merged configuration is
    validated as a whole, so e.g. enabling notifications requires a
    destination matching the channel.
    """
    try:
        new_config = await config.update(update.model_dump(mode="json", exclude_none=True))
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()]
        )
    except StoreUnavailableError as e:
        logger.error(f"Configuration update not persisted: {e}")
        raise HTTPException(status_code=503, detail="Configuration store unavailable")

    logger.info(f"Audit configuration updated by {current_user.username}")
    return new_config


# ============================================================================
# Retention
# ============================================================================

@router.post("/retention/sweep", response_model=SweepResult)
async def run_retention_sweep(
    current_user: User = Depends(get_admin_user_or_token),
    sweeper: RetentionSweeper = Depends(get_sweeper),
    config: ConfigProvider = Depends(get_config_provider)
):
    """
    Run the retention sweep now instead of waiting for the next tick.

    **Authentication:** Bearer token (admin) or X-Admin-Token
    """
    deleted = await sweeper.sweep()
    return SweepResult(
        deleted=deleted,
        retention_days=config.current.retention.retention_days
    )


# ============================================================================
# Stats
# ============================================================================

@router.get("/stats", response_model=EventSummary)
async def get_service_stats(
    hours: int = 24,
    current_user: User = Depends(get_admin_user_or_token),
    store: EventStore = Depends(get_store)
):
    """
    Event counts overall and over the last `hours` (default 24), by severity
    and by type.

    **Authentication:** Bearer token (admin) or X-Admin-Token
    """
    since = utcnow() - timedelta(hours=max(1, hours))
    try:
        return await store.summary(since)
    except StoreUnavailableError as e:
        logger.warning(f"Stats unavailable: {e}")
        raise HTTPException(status_code=503, detail="Audit store unavailable")
