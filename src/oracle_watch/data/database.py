"""aiosqlite connection manager for the oracle monitor.

One connection serves four tables: ``price_observations`` (every reading
collected from a source), ``price_alerts`` (anomaly-detector rows),
``alert_rules`` and ``alerts`` (rule engine documents). File databases run
in WAL mode so API reads do not block the collection cycle's writes.
"""

import os
from typing import Self

import aiosqlite

from oracle_watch.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS price_observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    symbol TEXT NOT NULL,
    price TEXT NOT NULL,
    observed_at REAL NOT NULL,
    fetched_at REAL NOT NULL,
    confidence TEXT,
    UNIQUE (source, symbol, observed_at)
);

CREATE TABLE IF NOT EXISTS price_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    issue_type TEXT NOT NULL,
    details TEXT NOT NULL,
    severity TEXT NOT NULL,
    created_at REAL NOT NULL,
    resolved INTEGER NOT NULL DEFAULT 0,
    resolved_at REAL
);

CREATE TABLE IF NOT EXISTS alert_rules (
    id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    document TEXT NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at REAL NOT NULL,
    document TEXT NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_observations_symbol_ts
    ON price_observations(symbol, observed_at);

CREATE INDEX IF NOT EXISTS idx_price_alerts_symbol_open
    ON price_alerts(symbol, resolved, created_at);

CREATE INDEX IF NOT EXISTS idx_alerts_rule_symbol_status
    ON alerts(rule_id, symbol, status);
"""


class Database:
    """Owns the monitor's SQLite connection and schema.

    ``connect`` creates the parent directory of a file path, applies the
    schema idempotently and records ``SCHEMA_VERSION`` on first use. Pass
    ``":memory:"`` for a throwaway database.

    Usage:
        async with Database("data/oracle_watch.db") as database:
            store = MonitorStore(database)
    """

    def __init__(self, db_path: str = "data/oracle_watch.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Open connection shared by MonitorStore and SqliteAlertStore."""
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def in_memory(self) -> bool:
        return self._db_path == ":memory:"

    async def connect(self) -> None:
        if not self.in_memory:
            parent = os.path.dirname(self._db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path)
        if not self.in_memory:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
        self._connection = conn

        await self._apply_schema(conn)
        logger.info("database_connected", db_path=self._db_path, in_memory=self.in_memory)

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("database_closed", db_path=self._db_path)

    async def _apply_schema(self, conn: aiosqlite.Connection) -> None:
        """Create observation, price-alert, rule and alert tables, then stamp the version."""
        await conn.executescript(_CREATE_TABLES_SQL)
        await conn.executescript(_CREATE_INDEXES_SQL)

        async with conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
        stored = row[0] if row else None

        if stored is None:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)
        elif stored != SCHEMA_VERSION:
            logger.warning(
                "schema_version_mismatch", stored=stored, expected=SCHEMA_VERSION
            )
        await conn.commit()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
