"""Tests for the SQLite database manager, MonitorStore and SqliteAlertStore.

All tests use an in-memory database unless a file path is under test.
"""

from decimal import Decimal

import pytest

from oracle_watch.alerts.models import (
    Alert,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    ConditionType,
)
from oracle_watch.data.database import Database
from oracle_watch.data.store import MonitorStore, SqliteAlertStore
from oracle_watch.exceptions import StorageError


def _rule(rule_id: str, cooldown_ms: int = 300_000) -> AlertRule:
    return AlertRule(
        id=rule_id,
        name=f"Rule {rule_id}",
        severity=AlertSeverity.WARNING,
        conditions=[AlertCondition(type=ConditionType.PRICE_DEVIATION, threshold=Decimal("0.01"))],
        cooldown_ms=cooldown_ms,
    )


def _alert(alert_id: str, created_at: float, symbol: str = "ETH/USD", rule_id: str = "r1") -> Alert:
    return Alert(
        id=alert_id,
        rule_id=rule_id,
        rule_name="Rule",
        severity=AlertSeverity.WARNING,
        title="title",
        message="message",
        symbol=symbol,
        context={"max_deviation": "0.02"},
        created_at=created_at,
        updated_at=created_at,
    )


class TestDatabase:
    @pytest.mark.asyncio
    async def test_file_database_creates_directory(self, tmp_path) -> None:
        path = tmp_path / "nested" / "monitor.db"
        async with Database(str(path)) as database:
            assert database.is_connected
            cursor = await database.db.execute("SELECT version FROM schema_version")
            assert (await cursor.fetchone())[0] == 1
        assert path.exists()
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_reopen_keeps_existing_schema_version(self, tmp_path) -> None:
        path = str(tmp_path / "monitor.db")
        async with Database(path) as database:
            assert not database.in_memory
            await database.db.execute("UPDATE schema_version SET version = 2")
            await database.db.commit()

        async with Database(path) as database:
            cursor = await database.db.execute("SELECT version FROM schema_version")
            assert [row[0] for row in await cursor.fetchall()] == [2]

    def test_db_before_connect_raises(self) -> None:
        with pytest.raises(RuntimeError):
            Database(":memory:").db


class TestObservations:
    @pytest.mark.asyncio
    async def test_insert_and_read_preserves_decimal(self, monitor_store, make_observation) -> None:
        obs = make_observation("pyth", price="3500.12345678")
        assert await monitor_store.insert_observations([obs]) == 1

        rows = await monitor_store.get_recent_observations("ETH/USD", since=0)

        assert len(rows) == 1
        assert rows[0].price == Decimal("3500.12345678")
        assert isinstance(rows[0].price, Decimal)
        assert rows[0].observed_at == obs.observed_at

    @pytest.mark.asyncio
    async def test_duplicate_reading_is_ignored(self, monitor_store, make_observation) -> None:
        obs = make_observation("pyth")
        await monitor_store.insert_observations([obs])
        assert await monitor_store.insert_observations([obs]) == 0

    @pytest.mark.asyncio
    async def test_non_positive_price_not_stored(self, monitor_store, make_observation) -> None:
        assert await monitor_store.insert_observations([make_observation(price="0")]) == 0
        assert await monitor_store.get_recent_observations("ETH/USD", since=0) == []

    @pytest.mark.asyncio
    async def test_recent_newest_first_with_limit_and_since(
        self, monitor_store, make_observation, clock
    ) -> None:
        await monitor_store.insert_observations(
            [
                make_observation("a", price="1", age=300),
                make_observation("b", price="2", age=200),
                make_observation("c", price="3", age=100),
                make_observation("d", price="4", age=5000),
            ]
        )

        rows = await monitor_store.get_recent_observations("ETH/USD", since=clock() - 3600, limit=2)

        assert [r.source for r in rows] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_distinct_sources_and_active_symbols(
        self, monitor_store, make_observation, clock
    ) -> None:
        await monitor_store.insert_observations(
            [
                make_observation("pyth", price="1", age=10),
                make_observation("pyth", price="1", age=20),
                make_observation("chainlink", price="1", age=30),
                make_observation("pyth", symbol="BTC/USD", price="1", age=10),
                make_observation("pyth", symbol="SOL/USD", price="1", age=90_000),
            ]
        )

        assert await monitor_store.count_distinct_sources("ETH/USD", clock() - 60) == 2
        assert await monitor_store.list_active_symbols(clock() - 3600) == ["BTC/USD", "ETH/USD"]


class TestPriceAlerts:
    @pytest.mark.asyncio
    async def test_insert_find_resolve(self, monitor_store, clock) -> None:
        record = await monitor_store.insert_price_alert(
            "ETH/USD", "STALE", "medium", {"age_ms": 600000}, created_at=clock()
        )
        assert record.id > 0

        found = await monitor_store.find_recent_unresolved_alert("ETH/USD", clock() - 60)
        assert found.id == record.id
        assert found.details == {"age_ms": 600000}
        assert await monitor_store.find_recent_unresolved_alert("ETH/USD", clock() + 1) is None

        assert await monitor_store.resolve_price_alerts(["ETH/USD"], resolved_at=clock()) == 1
        assert await monitor_store.find_recent_unresolved_alert("ETH/USD", 0) is None
        assert await monitor_store.resolve_price_alerts([]) == 0

    @pytest.mark.asyncio
    async def test_get_price_alerts_filters(self, monitor_store, clock) -> None:
        await monitor_store.insert_price_alert("ETH/USD", "STALE", "medium", {}, clock() - 20)
        await monitor_store.insert_price_alert("BTC/USD", "HIGH_DEVIATION", "high", {}, clock() - 10)
        await monitor_store.resolve_price_alerts(["ETH/USD"])

        all_rows = await monitor_store.get_price_alerts()
        assert [r.symbol for r in all_rows] == ["BTC/USD", "ETH/USD"]
        assert [r.symbol for r in await monitor_store.get_price_alerts(unresolved_only=True)] == [
            "BTC/USD"
        ]
        eth = await monitor_store.get_price_alerts(symbol="ETH/USD")
        assert eth[0].resolved
        assert eth[0].to_dict()["issue_type"] == "STALE"


class TestSqliteAlertStore:
    @pytest.mark.asyncio
    async def test_rules_keep_insertion_order_across_updates(self, database) -> None:
        store = SqliteAlertStore(database)
        await store.save_rule(_rule("b"))
        await store.save_rule(_rule("a"))
        await store.save_rule(_rule("b", cooldown_ms=1))

        rules = await store.list_rules()
        assert [r.id for r in rules] == ["b", "a"]
        assert rules[0].cooldown_ms == 1
        assert (await store.get_rule("a")).name == "Rule a"

    @pytest.mark.asyncio
    async def test_delete_rule(self, database) -> None:
        store = SqliteAlertStore(database)
        await store.save_rule(_rule("a"))
        assert await store.delete_rule("a") is True
        assert await store.delete_rule("a") is False
        assert await store.get_rule("a") is None

    @pytest.mark.asyncio
    async def test_alert_lifecycle_queries(self, database) -> None:
        store = SqliteAlertStore(database)
        first = _alert("alert-1", 100.0)
        second = _alert("alert-2", 200.0, symbol="BTC/USD")
        await store.save_alert(first)
        await store.save_alert(second)

        open_eth = await store.find_open_alert("r1", "ETH/USD")
        assert open_eth.id == "alert-1"
        assert open_eth.context == {"max_deviation": "0.02"}

        first.status = AlertStatus.RESOLVED
        first.resolution = "fixed"
        await store.save_alert(first)

        assert await store.find_open_alert("r1", "ETH/USD") is None
        assert (await store.get_alert("alert-1")).resolution == "fixed"
        assert [a.id for a in await store.list_alerts()] == ["alert-2", "alert-1"]
        assert [a.id for a in await store.list_alerts(status=AlertStatus.RESOLVED)] == ["alert-1"]
        assert [a.id for a in await store.list_alerts(symbol="BTC/USD")] == ["alert-2"]


class TestStorageErrors:
    @pytest.mark.asyncio
    async def test_driver_error_becomes_storage_error(self, database) -> None:
        await database.db.execute("DROP TABLE price_observations")
        store = MonitorStore(database)

        with pytest.raises(StorageError, match="count_distinct_sources"):
            await store.count_distinct_sources("ETH/USD", 0)
