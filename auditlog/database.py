"""
Database connection and schema management using asyncpg.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

import asyncpg
from asyncpg import Pool

from auditlog.config import Settings

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS audit_events (
    id              BIGSERIAL PRIMARY KEY,
    event_type      VARCHAR(50)  NOT NULL,
    message         TEXT         NOT NULL,
    severity        VARCHAR(20)  NOT NULL DEFAULT 'info'
                    CHECK (severity IN ('info', 'warning', 'error')),
    source_address  VARCHAR(45)  NOT NULL DEFAULT '0.0.0.0',
    actor           VARCHAR(100) NOT NULL DEFAULT 'Guest',
    timestamp_utc   TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_audit_events_type ON audit_events (event_type);
CREATE INDEX IF NOT EXISTS idx_audit_events_severity ON audit_events (severity);
CREATE INDEX IF NOT EXISTS idx_audit_events_recent ON audit_events (timestamp_utc DESC, id DESC);

CREATE TABLE IF NOT EXISTS service_settings (
    key         VARCHAR(100) PRIMARY KEY,
    value       JSONB        NOT NULL,
    updated_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
);
"""


class Database:
    """Async PostgreSQL database connection pool manager."""

    def __init__(self, config: Settings):
        self._settings = config
        self._pool: Optional[Pool] = None
        self._lock = asyncio.Lock()
        self._connect_hooks: List[Callable[[], Awaitable[object]]] = []
        self._last_attempt: Optional[float] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    def on_connect(self, hook: Callable[[], Awaitable[object]]) -> None:
        """Register a coroutine function to run after every successful connect."""
        self._connect_hooks.append(hook)

    async def connect(self) -> None:
        """
        Initialize the connection pool.

        Provisions the schema when ``auto_create_schema`` is set, then runs
        the registered connect hooks.
        """
        async with self._lock:
            if self._pool is not None:
                return

            logger.info("Connecting to PostgreSQL...")
            self._last_attempt = time.monotonic()

            pool = await asyncpg.create_pool(
                dsn=self._settings.dsn,
                min_size=self._settings.db_pool_min_size,
                max_size=self._settings.db_pool_max_size,
                command_timeout=self._settings.db_command_timeout,
                server_settings={
                    'application_name': self._settings.app_name,
                }
            )

            if self._settings.auto_create_schema:
                try:
                    async with pool.acquire() as conn:
                        await conn.execute(SCHEMA_SQL)
                except Exception:
                    await pool.close()
                    raise
                logger.info("Audit schema is provisioned")

            self._pool = pool
            logger.info("PostgreSQL connection pool created successfully")

        for hook in self._connect_hooks:
            await hook()

    async def ensure_connected(self) -> bool:
        """
        Connect if not connected yet.

        After a failed attempt, further attempts wait for
        ``db_reconnect_interval_seconds``; until then this returns False.

        Raises:
            Whatever ``connect()`` raises on a failed attempt
        """
        if self._pool is not None:
            return True

        last_attempt = self._last_attempt
        if (
            last_attempt is not None
            and time.monotonic() - last_attempt < self._settings.db_reconnect_interval_seconds
        ):
            return False

        logger.info("Attempting to reconnect to PostgreSQL")
        await self.connect()
        return True

    async def disconnect(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is None:
                return

            logger.info("Closing PostgreSQL connection pool...")
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    @property
    def pool(self) -> Pool:
        """Get the connection pool."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return status."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> list:
        """Fetch all rows from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        """Fetch a single value from a query."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)
