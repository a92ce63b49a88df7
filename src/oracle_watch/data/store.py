"""Typed SQLite read/write abstraction for monitor data.

MonitorStore covers price observations and anomaly-detector alert rows.
SqliteAlertStore implements the rule engine's AlertStore over the same
database. All SQL is isolated behind these two classes.

CRITICAL: Prices are stored as TEXT in SQLite and restored as Decimal on read.
"""

import json
import time
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

import aiosqlite

from oracle_watch.alerts.models import Alert, AlertRule, AlertStatus
from oracle_watch.alerts.store import AlertStore
from oracle_watch.data.database import Database
from oracle_watch.data.models import PriceAlertRecord
from oracle_watch.exceptions import StorageError
from oracle_watch.logging import get_logger
from oracle_watch.models import PriceObservation

logger = get_logger(__name__)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver errors as StorageError naming the failed operation."""
    try:
        yield
    except aiosqlite.Error as e:
        raise StorageError(f"{operation} failed: {e}") from e


class MonitorStore:
    """Async SQLite store for observations and anomaly-detector alerts.

    Usage:
        async with Database("data/oracle_watch.db") as database:
            store = MonitorStore(database)
            await store.insert_observations(observations)
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Observations
    # ──────────────────────────────────────────────

    async def insert_observations(self, observations: list[PriceObservation]) -> int:
        """Insert observations, ignoring repeats of (source, symbol, observed_at).

        Observations with a non-positive price are never stored.
        Returns the number of rows actually inserted.
        """
        data = [
            (
                o.source,
                o.symbol,
                str(o.price),
                o.observed_at,
                o.fetched_at,
                str(o.confidence) if o.confidence is not None else None,
            )
            for o in observations
            if o.price > 0
        ]
        if not data:
            return 0

        with _storage_errors("insert_observations"):
            cursor = await self._database.db.executemany(
                "INSERT OR IGNORE INTO price_observations "
                "(source, symbol, price, observed_at, fetched_at, confidence) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                data,
            )
            await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug("inserted_observations", total=len(data), inserted=inserted)
        return inserted

    async def get_recent_observations(
        self, symbol: str, since: float, limit: int = 50
    ) -> list[PriceObservation]:
        """Observations for ``symbol`` observed at or after ``since``, newest first."""
        with _storage_errors("get_recent_observations"):
            cursor = await self._database.db.execute(
                "SELECT source, symbol, price, observed_at, fetched_at, confidence "
                "FROM price_observations "
                "WHERE symbol = ? AND observed_at >= ? "
                "ORDER BY observed_at DESC, id DESC LIMIT ?",
                (symbol, since, limit),
            )
            rows = await cursor.fetchall()

        return [
            PriceObservation(
                source=row[0],
                symbol=row[1],
                price=Decimal(row[2]),
                observed_at=row[3],
                fetched_at=row[4],
                confidence=Decimal(row[5]) if row[5] is not None else None,
            )
            for row in rows
        ]

    async def count_distinct_sources(self, symbol: str, since: float) -> int:
        """Number of distinct sources that reported ``symbol`` since ``since``."""
        with _storage_errors("count_distinct_sources"):
            cursor = await self._database.db.execute(
                "SELECT COUNT(DISTINCT source) FROM price_observations "
                "WHERE symbol = ? AND observed_at >= ?",
                (symbol, since),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_active_symbols(self, since: float) -> list[str]:
        """Symbols with at least one observation since ``since``, sorted."""
        with _storage_errors("list_active_symbols"):
            cursor = await self._database.db.execute(
                "SELECT DISTINCT symbol FROM price_observations "
                "WHERE observed_at >= ? ORDER BY symbol",
                (since,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # ──────────────────────────────────────────────
    # Anomaly-detector alerts
    # ──────────────────────────────────────────────

    async def find_recent_unresolved_alert(
        self, symbol: str, since: float
    ) -> PriceAlertRecord | None:
        """Newest unresolved alert row for ``symbol`` created at or after ``since``."""
        with _storage_errors("find_recent_unresolved_alert"):
            cursor = await self._database.db.execute(
                f"SELECT {_PRICE_ALERT_COLUMNS} FROM price_alerts "
                "WHERE symbol = ? AND resolved = 0 AND created_at >= ? "
                "ORDER BY created_at DESC LIMIT 1",
                (symbol, since),
            )
            row = await cursor.fetchone()
        return _price_alert_from_row(row) if row else None

    async def insert_price_alert(
        self,
        symbol: str,
        issue_type: str,
        severity: str,
        details: dict[str, Any],
        created_at: float | None = None,
    ) -> PriceAlertRecord:
        created_at = time.time() if created_at is None else created_at
        with _storage_errors("insert_price_alert"):
            cursor = await self._database.db.execute(
                "INSERT INTO price_alerts (symbol, issue_type, details, severity, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (symbol, issue_type, json.dumps(details, default=str), severity, created_at),
            )
            await self._database.db.commit()
        return PriceAlertRecord(
            id=cursor.lastrowid or 0,
            symbol=symbol,
            issue_type=issue_type,
            severity=severity,
            created_at=created_at,
            details=details,
        )

    async def resolve_price_alerts(
        self, symbols: list[str], resolved_at: float | None = None
    ) -> int:
        """Mark every unresolved alert row for ``symbols`` resolved. Returns rows updated."""
        if not symbols:
            return 0
        resolved_at = time.time() if resolved_at is None else resolved_at
        placeholders = ", ".join("?" for _ in symbols)
        with _storage_errors("resolve_price_alerts"):
            cursor = await self._database.db.execute(
                "UPDATE price_alerts SET resolved = 1, resolved_at = ? "
                f"WHERE resolved = 0 AND symbol IN ({placeholders})",
                (resolved_at, *symbols),
            )
            await self._database.db.commit()
        return cursor.rowcount

    async def get_price_alerts(
        self,
        symbol: str | None = None,
        unresolved_only: bool = False,
        limit: int = 100,
    ) -> list[PriceAlertRecord]:
        """Alert rows, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)
        if unresolved_only:
            clauses.append("resolved = 0")
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        params.append(limit)

        with _storage_errors("get_price_alerts"):
            cursor = await self._database.db.execute(
                f"SELECT {_PRICE_ALERT_COLUMNS} FROM price_alerts {where}"
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            )
            rows = await cursor.fetchall()
        return [_price_alert_from_row(row) for row in rows]


_PRICE_ALERT_COLUMNS = "id, symbol, issue_type, details, severity, created_at, resolved, resolved_at"


def _price_alert_from_row(row: Any) -> PriceAlertRecord:
    return PriceAlertRecord(
        id=row[0],
        symbol=row[1],
        issue_type=row[2],
        details=json.loads(row[3]),
        severity=row[4],
        created_at=row[5],
        resolved=bool(row[6]),
        resolved_at=row[7],
    )


class SqliteAlertStore(AlertStore):
    """AlertStore persisting rules and alerts as JSON documents."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def list_rules(self) -> list[AlertRule]:
        with _storage_errors("list_rules"):
            cursor = await self._database.db.execute(
                "SELECT document FROM alert_rules ORDER BY position"
            )
            rows = await cursor.fetchall()
        return [AlertRule.from_dict(json.loads(row[0])) for row in rows]

    async def get_rule(self, rule_id: str) -> AlertRule | None:
        with _storage_errors("get_rule"):
            cursor = await self._database.db.execute(
                "SELECT document FROM alert_rules WHERE id = ?", (rule_id,)
            )
            row = await cursor.fetchone()
        return AlertRule.from_dict(json.loads(row[0])) if row else None

    async def save_rule(self, rule: AlertRule) -> None:
        with _storage_errors("save_rule"):
            await self._database.db.execute(
                "INSERT INTO alert_rules (id, position, document, updated_at) "
                "VALUES (?, (SELECT COALESCE(MAX(position), 0) + 1 FROM alert_rules), ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "document = excluded.document, updated_at = excluded.updated_at",
                (rule.id, json.dumps(rule.to_dict()), time.time()),
            )
            await self._database.db.commit()

    async def delete_rule(self, rule_id: str) -> bool:
        with _storage_errors("delete_rule"):
            cursor = await self._database.db.execute(
                "DELETE FROM alert_rules WHERE id = ?", (rule_id,)
            )
            await self._database.db.commit()
        return cursor.rowcount > 0

    async def get_alert(self, alert_id: str) -> Alert | None:
        with _storage_errors("get_alert"):
            cursor = await self._database.db.execute(
                "SELECT document FROM alerts WHERE id = ?", (alert_id,)
            )
            row = await cursor.fetchone()
        return Alert.from_dict(json.loads(row[0])) if row else None

    async def find_open_alert(self, rule_id: str, symbol: str) -> Alert | None:
        with _storage_errors("find_open_alert"):
            cursor = await self._database.db.execute(
                "SELECT document FROM alerts "
                "WHERE rule_id = ? AND symbol = ? AND status = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (rule_id, symbol, AlertStatus.OPEN.value),
            )
            row = await cursor.fetchone()
        return Alert.from_dict(json.loads(row[0])) if row else None

    async def save_alert(self, alert: Alert) -> None:
        with _storage_errors("save_alert"):
            await self._database.db.execute(
                "INSERT INTO alerts (id, rule_id, symbol, status, created_at, document) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "status = excluded.status, document = excluded.document",
                (
                    alert.id,
                    alert.rule_id,
                    alert.symbol,
                    alert.status.value,
                    alert.created_at,
                    json.dumps(alert.to_dict(), default=str),
                ),
            )
            await self._database.db.commit()

    async def list_alerts(
        self, status: AlertStatus | None = None, symbol: str | None = None
    ) -> list[Alert]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        with _storage_errors("list_alerts"):
            cursor = await self._database.db.execute(
                f"SELECT document FROM alerts{where} ORDER BY created_at DESC", params
            )
            rows = await cursor.fetchall()
        return [Alert.from_dict(json.loads(row[0])) for row in rows]
