"""
Test fixtures and configuration for pytest.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator, List, Tuple

import pytest
from fastapi.testclient import TestClient

from auditlog.auth import get_password_hash
from auditlog.config import Settings
from auditlog.models import AuditConfig, EventRecord
from auditlog.services.config_store import ConfigProvider
from auditlog.services.dispatcher import EventDispatcher
from auditlog.services.notifier import NotificationDispatchError, NotificationGate, Notifier
from auditlog.services.query import QueryEngine
from auditlog.services.store import InMemoryEventStore
from auditlog.services.sweeper import RetentionSweeper
from auditlog.services.writer import EventWriter

OPERATOR_PASSWORD = "correct horse battery staple"
ADMIN_TOKEN = "test-admin-token"


class MutableClock:
    """Clock for the in-memory store that tests can move around."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    """Notifier that records deliveries instead of sending them."""

    def __init__(self, channel: str = "email", fail: bool = False):
        self.channel = channel
        self.fail = fail
        self.sent: List[Tuple[EventRecord, str]] = []

    async def send(self, event: EventRecord, destination: str) -> None:
        if self.fail:
            raise NotificationDispatchError("simulated delivery failure")
        self.sent.append((event, destination))


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: MutableClock) -> InMemoryEventStore:
    return InMemoryEventStore(clock=clock)


@pytest.fixture
def config_provider() -> ConfigProvider:
    return ConfigProvider(AuditConfig())


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher(max_queue_size=100)


@pytest.fixture
def gate(config_provider: ConfigProvider, recording_notifier: RecordingNotifier) -> NotificationGate:
    return NotificationGate(config_provider, {"email": recording_notifier})


@pytest.fixture
def writer(
    store: InMemoryEventStore,
    dispatcher: EventDispatcher,
    gate: NotificationGate
) -> EventWriter:
    dispatcher.subscribe(gate.handle)
    return EventWriter(store, dispatcher)


@pytest.fixture
def query_engine(store: InMemoryEventStore) -> QueryEngine:
    return QueryEngine(store)


@pytest.fixture
def sweeper(store: InMemoryEventStore, config_provider: ConfigProvider) -> RetentionSweeper:
    return RetentionSweeper(store, config_provider, interval_seconds=3600)


@pytest.fixture(scope="session")
def operator_password_hash() -> str:
    return get_password_hash(OPERATOR_PASSWORD)


@pytest.fixture
def test_settings(operator_password_hash: str) -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        admin_token=ADMIN_TOKEN,
        operator_username="operator",
        operator_password_hash=operator_password_hash,
        jwt_secret_key="test-jwt-secret",
        sweep_interval_seconds=3600,
        notification_enabled=False,
        log_level="WARNING",
    )


@pytest.fixture
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """TestClient over the in-memory backend, with the lifespan running."""
    from auditlog.main import create_app

    app = create_app(test_settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Token": ADMIN_TOKEN}
