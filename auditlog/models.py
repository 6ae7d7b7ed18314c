"""
Pydantic models for request/response validation and the audit domain.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# Severity
# ============================================================================

class Severity(str, Enum):
    """Three-level ordinal classification of audit events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def coerce(cls, value: Any) -> "Severity":
        """Map any input to a severity; unknown or missing values become INFO."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.INFO

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Severity"]:
        """Strict lookup used for filters: returns None when unrecognised."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}

GUEST_ACTOR = "Guest"
NULL_ADDRESS = "0.0.0.0"

# Column widths of audit_events.source_address and audit_events.actor
MAX_ADDRESS_LENGTH = 45
MAX_ACTOR_LENGTH = 100


# ============================================================================
# Event Models
# ============================================================================

class EventSubmission(BaseModel):
    """Request model for submitting an audit event."""

    type: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Category tag of the event",
        examples=["login_failed", "option_update", "lockout"]
    )

    message: str = Field(
        ...,
        max_length=10000,
        description="Human-readable description",
        examples=["Failed login for user alice"]
    )

    severity: Optional[Any] = Field(
        default=None,
        description="info, warning or error; anything else is stored as info",
        examples=["warning"]
    )

    @field_validator('type')
    @classmethod
    def validate_type_tag(cls, v: str) -> str:
        """Allow only alphanumeric characters, dots, hyphens, and underscores."""
        if not re.match(r'^[a-zA-Z0-9_.-]+$', v):
            raise ValueError('Must contain only alphanumeric characters, dots, hyphens, and underscores')
        return v


class EventResponse(BaseModel):
    """Response model for event submission."""

    status: str = Field(
        ...,
        description="Submission status",
        examples=["accepted", "degraded"]
    )

    id: Optional[int] = Field(
        default=None,
        description="Event ID if stored"
    )


class NewEvent(BaseModel):
    """An enriched event ready to be appended to the store."""

    type: str
    message: str
    severity: Severity = Severity.INFO
    source_address: str = NULL_ADDRESS
    actor: str = GUEST_ACTOR


class EventRecord(BaseModel):
    """A stored, immutable audit event."""

    model_config = ConfigDict(frozen=True)

    id: int
    type: str
    message: str
    severity: Severity
    timestamp: datetime
    source_address: str
    actor: str


class EventFilters(BaseModel):
    """Normalised conjunctive filters understood by every event store."""

    type: Optional[str] = None
    severity: Optional[Severity] = None
    search: Optional[str] = None
    start_time: Optional[datetime] = None
    end_before: Optional[datetime] = None


class EventPage(BaseModel):
    """One page of query results."""

    items: List[EventRecord]
    total: int
    total_pages: int = Field(..., serialization_alias="totalPages")
    page: int
    per_page: int = Field(..., serialization_alias="perPage")
    degraded: bool = False


class PurgeResult(BaseModel):
    """Result of a manual retention purge."""

    deleted: int
    before: datetime
    degraded: bool = False


class SweepResult(BaseModel):
    """Result of a retention sweep."""

    deleted: int
    retention_days: int


class EventSummary(BaseModel):
    """Aggregate counts for the dashboard."""

    total_events: int
    events_since: int
    since: datetime
    by_severity: Dict[str, int]
    by_type: List[Dict[str, Any]]


# ============================================================================
# Runtime Configuration Models
# ============================================================================

class RetentionPolicy(BaseModel):
    """How long events are kept."""

    retention_days: int = Field(default=30, ge=1, le=365)


class NotificationRule(BaseModel):
    """When and where alerts are sent."""

    enabled: bool = False
    channel: str = Field(default="email", pattern="^(email|webhook|slack)$")
    destination: str = ""
    minimum_severity: Severity = Severity.WARNING

    @model_validator(mode='after')
    def validate_destination(self) -> "NotificationRule":
        """An enabled rule needs a destination that fits its channel."""
        if not self.enabled:
            return self
        destination = self.destination.strip()
        if self.channel == "email":
            if not re.match(r'^[^@\s]+@[^@\s]+$', destination):
                raise ValueError('email channel requires a valid email address')
        elif not re.match(r'^https?://\S+$', destination):
            raise ValueError(f'{self.channel} channel requires an http(s) URL')
        return self


class AuditConfig(BaseModel):
    """Runtime configuration consumed by the sweeper and the notification gate."""

    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    notification: NotificationRule = Field(default_factory=NotificationRule)


class RetentionPolicyUpdate(BaseModel):
    retention_days: Optional[int] = Field(default=None, ge=1, le=365)


class NotificationRuleUpdate(BaseModel):
    enabled: Optional[bool] = None
    channel: Optional[str] = Field(default=None, pattern="^(email|webhook|slack)$")
    destination: Optional[str] = None
    minimum_severity: Optional[Severity] = None


class AuditConfigUpdate(BaseModel):
    """Partial configuration update; omitted fields keep their current value."""

    retention: Optional[RetentionPolicyUpdate] = None
    notification: Optional[NotificationRuleUpdate] = None


# ============================================================================
# Health Check Models
# ============================================================================

class HealthStatus(BaseModel):
    """Health check response."""

    status: str = Field(..., examples=["healthy", "unhealthy"])
    version: str
    storage: str = Field(..., examples=["available", "unavailable"])
    uptime_seconds: float
    timestamp: datetime
