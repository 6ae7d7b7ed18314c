"""
Runtime configuration provider.

Holds the retention policy and notification rule. Defaults come from the
environment settings; updates made through the admin API are deep-merged,
validated once, and persisted so they survive restarts.
"""

import json
import logging
from typing import Any, Dict, Optional

from auditlog.config import Settings
from auditlog.database import Database
from auditlog.models import AuditConfig, NotificationRule, RetentionPolicy
from auditlog.services.store import unavailable_on_failure

logger = logging.getLogger(__name__)

SETTINGS_KEY = "audit"


def defaults_from_settings(settings: Settings) -> AuditConfig:
    """Build the initial configuration from environment settings."""
    return AuditConfig(
        retention=RetentionPolicy(retention_days=settings.retention_days),
        notification=NotificationRule(
            enabled=settings.notification_enabled,
            channel=settings.notification_channel,
            destination=settings.notification_destination,
            minimum_severity=settings.notification_minimum_severity,
        ),
    )


def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``patch`` into a copy of ``base``.

    Nested dicts are merged key by key; ``None`` values in the patch are
    skipped so partial updates keep existing values.
    """
    merged = dict(base)
    for key, value in patch.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigProvider:
    """
    Owner of the current ``AuditConfig``.

    When constructed without a database, configuration lives in memory only.
    """

    def __init__(self, defaults: AuditConfig, db: Optional[Database] = None):
        self._defaults = defaults
        self._current = defaults
        self.db = db

    @property
    def current(self) -> AuditConfig:
        return self._current

    async def load(self) -> AuditConfig:
        """Overlay the persisted configuration, if any, on the defaults."""
        if self.db is None:
            return self._current

        async with unavailable_on_failure("load settings"):
            raw = await self.db.fetchval(
                "SELECT value FROM service_settings WHERE key = $1",
                SETTINGS_KEY
            )
        if raw is None:
            logger.info("No persisted audit configuration, using defaults")
            return self._current

        stored = json.loads(raw) if isinstance(raw, str) else raw
        try:
            self._current = AuditConfig.model_validate(
                deep_merge(self._defaults.model_dump(mode="json"), stored)
            )
        except ValueError as e:
            logger.error(f"Persisted audit configuration is invalid, using defaults: {e}")
            self._current = self._defaults

        logger.info(
            f"Loaded audit configuration: retention_days={self._current.retention.retention_days}, "
            f"notifications={'on' if self._current.notification.enabled else 'off'}"
        )
        return self._current

    async def update(self, patch: Dict[str, Any]) -> AuditConfig:
        """
        Apply a partial update.

        Raises:
            pydantic.ValidationError: If the merged configuration is invalid
            StoreUnavailableError: If it could not be persisted
        """
        merged = deep_merge(self._current.model_dump(mode="json"), patch)
        new_config = AuditConfig.model_validate(merged)

        if self.db is not None:
            async with unavailable_on_failure("save settings"):
                await self.db.execute(
                    """
                    INSERT INTO service_settings (key, value, updated_at)
                    VALUES ($1, $2::jsonb, now())
                    ON CONFLICT (key) DO UPDATE
                    SET value = EXCLUDED.value,
                        updated_at = now()
                    """,
                    SETTINGS_KEY,
                    new_config.model_dump_json()
                )

        self._current = new_config
        logger.info(f"Audit configuration updated: {json.dumps(patch, default=str)}")
        return new_config
