"""
Service wiring.

Builds the event store, configuration provider, dispatcher and the four
audit components from settings, and owns their startup/shutdown order.
Components receive their collaborators explicitly; nothing reaches for a
global instance.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from auditlog.config import Settings
from auditlog.database import Database
from auditlog.services.config_store import ConfigProvider, defaults_from_settings
from auditlog.services.dispatcher import EventDispatcher
from auditlog.services.notifier import NotificationGate, Notifier, build_notifiers
from auditlog.services.query import QueryEngine
from auditlog.services.store import (
    EventStore, InMemoryEventStore, PostgresEventStore, StoreUnavailableError,
    unavailable_on_failure
)
from auditlog.services.sweeper import RetentionSweeper
from auditlog.services.writer import EventWriter

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Optional[Database]
    store: EventStore
    config: ConfigProvider
    dispatcher: EventDispatcher
    writer: EventWriter
    query_engine: QueryEngine
    sweeper: RetentionSweeper
    gate: NotificationGate

    async def start(self) -> None:
        """Connect storage, load runtime configuration, start background tasks."""
        if self.database is not None:
            try:
                async with unavailable_on_failure("startup"):
                    await self.database.connect()
            except StoreUnavailableError as e:
                # The store reconnects on its next use
                logger.error(f"PostgreSQL unavailable at startup, running degraded: {e}")
        self.dispatcher.start()
        self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.dispatcher.stop()
        if self.database is not None:
            await self.database.disconnect()


def build_container(
    settings: Settings,
    notifiers: Optional[Dict[str, Notifier]] = None
) -> ServiceContainer:
    """
    Wire all components for the configured storage backend.

    Args:
        settings: Application settings
        notifiers: Channel notifiers; built from settings when omitted
    """
    if settings.storage_backend == "memory":
        database = None
        store: EventStore = InMemoryEventStore()
    else:
        database = Database(settings)
        store = PostgresEventStore(database)

    config = ConfigProvider(defaults_from_settings(settings), db=database)
    if database is not None:
        database.on_connect(config.load)
    dispatcher = EventDispatcher(max_queue_size=settings.notification_queue_size)
    if notifiers is None:
        notifiers = build_notifiers(settings)
    gate = NotificationGate(config, notifiers)
    dispatcher.subscribe(gate.handle)

    return ServiceContainer(
        settings=settings,
        database=database,
        store=store,
        config=config,
        dispatcher=dispatcher,
        writer=EventWriter(store, dispatcher),
        query_engine=QueryEngine(store),
        sweeper=RetentionSweeper(store, config, settings.sweep_interval_seconds),
        gate=gate,
    )
