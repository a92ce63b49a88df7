"""Tests for the JSON control surface using FastAPI's TestClient.

The rule engine runs over the in-memory alert store; storage-backed
components are mocked so no database crosses the TestClient event loop.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from oracle_watch.alerts.engine import RuleEngine
from oracle_watch.alerts.models import Alert, AlertSeverity
from oracle_watch.alerts.store import InMemoryAlertStore
from oracle_watch.api.app import create_app
from oracle_watch.config import HealthSettings
from oracle_watch.data.models import PriceAlertRecord
from oracle_watch.exceptions import StorageError
from oracle_watch.health.checker import HealthChecker
from oracle_watch.models import ConsensusResult, HealthCheckResult, HealthStatus, IssueCode

RULE = {
    "id": "eth-deviation",
    "name": "ETH deviation",
    "severity": "warning",
    "conditions": [{"type": "price_deviation", "threshold": "0.01", "symbol": "ETH/USD"}],
    "channels": [{"type": "webhook", "config": {"url": "https://hooks.test"}}],
}


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    store = InMemoryAlertStore()
    alert = Alert(
        id="alert-1",
        rule_id="eth-deviation",
        rule_name="ETH deviation",
        severity=AlertSeverity.WARNING,
        title="[WARNING] ETH/USD - ETH deviation",
        message="Symbol: ETH/USD",
        symbol="ETH/USD",
        created_at=1_700_000_000.0,
    )
    asyncio.run(store.save_alert(alert))
    return store


@pytest.fixture
def app(alert_store):
    app = create_app()

    obs_store = MagicMock()
    obs_store.get_recent_observations = AsyncMock(return_value=[])
    obs_store.get_price_alerts = AsyncMock(
        return_value=[
            PriceAlertRecord(
                id=7,
                symbol="ETH/USD",
                issue_type="STALE",
                severity="medium",
                created_at=1_700_000_000.0,
            )
        ]
    )

    monitor = MagicMock()
    monitor.get_all_consensus.return_value = [
        ConsensusResult(symbol="ETH/USD", source_count=1, consensus_price=Decimal("3500"))
    ]
    monitor.get_consensus.return_value = None
    monitor.get_status.return_value = {"running": True, "cycles": 3}

    detector = MagicMock()
    detector.is_running = False
    detector.run_once = AsyncMock(
        return_value=HealthCheckResult(
            statuses=[HealthStatus(symbol="ETH/USD", issues=(IssueCode.STALE,), age_ms=600_000)],
            checked_at=1_700_000_000.0,
        )
    )

    app.state.rule_engine = RuleEngine(alert_store)
    app.state.health_checker = HealthChecker(obs_store, HealthSettings())
    app.state.anomaly_detector = detector
    app.state.price_monitor = monitor
    app.state.monitor_store = obs_store
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


class TestRulesApi:
    def test_create_list_get(self, client: TestClient) -> None:
        response = client.post("/api/rules", json=RULE)
        assert response.status_code == 201
        assert response.json()["logic"] == "OR"

        assert [r["id"] for r in client.get("/api/rules").json()] == ["eth-deviation"]
        assert client.get("/api/rules/eth-deviation").json()["name"] == "ETH deviation"

    def test_duplicate_is_conflict(self, client: TestClient) -> None:
        client.post("/api/rules", json=RULE)
        response = client.post("/api/rules", json=RULE)
        assert response.status_code == 409

    def test_invalid_document(self, client: TestClient) -> None:
        response = client.post("/api/rules", json={"id": "x", "name": "x", "severity": "warning"})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: conditions"

    def test_non_json_body(self, client: TestClient) -> None:
        response = client.post(
            "/api/rules", content=b"not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_update_delete_toggle(self, client: TestClient) -> None:
        client.post("/api/rules", json=RULE)

        updated = client.put("/api/rules/eth-deviation", json={"cooldown_ms": 1000})
        assert updated.json()["cooldown_ms"] == 1000

        toggled = client.post("/api/rules/eth-deviation/toggle", json={"enabled": False})
        assert toggled.json()["enabled"] is False
        assert client.post("/api/rules/eth-deviation/toggle").json()["enabled"] is True
        assert (
            client.post("/api/rules/eth-deviation/toggle", json={"enabled": "no"}).status_code
            == 400
        )

        assert client.delete("/api/rules/eth-deviation").json() == {
            "deleted": True,
            "id": "eth-deviation",
        }
        assert client.delete("/api/rules/eth-deviation").status_code == 404

    def test_missing_rule(self, client: TestClient) -> None:
        assert client.get("/api/rules/nope").status_code == 404
        assert client.put("/api/rules/nope", json={"cooldown_ms": 1}).status_code == 404
        assert client.post("/api/rules/nope/toggle").status_code == 404


class TestAlertsApi:
    def test_list_and_filter(self, client: TestClient) -> None:
        assert [a["id"] for a in client.get("/api/alerts").json()] == ["alert-1"]
        assert client.get("/api/alerts", params={"status": "resolved"}).json() == []
        assert client.get("/api/alerts", params={"status": "bogus"}).status_code == 400
        assert client.get("/api/alerts", params={"symbol": "BTC/USD"}).json() == []

    def test_acknowledge_and_resolve(self, client: TestClient) -> None:
        acked = client.post("/api/alerts/alert-1/acknowledge", json={"user": "oncall"})
        assert acked.status_code == 200
        assert acked.json()["status"] == "acknowledged"
        assert acked.json()["acknowledged_by"] == "oncall"
        assert client.post("/api/alerts/alert-1/acknowledge").status_code == 404

        resolved = client.post("/api/alerts/alert-1/resolve", json={"resolution": "fixed"})
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolution"] == "fixed"
        assert client.post("/api/alerts/alert-1/resolve").status_code == 404

    def test_stats_and_history(self, client: TestClient) -> None:
        stats = client.get("/api/alerts/stats").json()
        assert stats["total_alerts"] == 1
        assert stats["by_status"]["open"] == 1

        history = client.get("/api/alerts/history", params={"symbol": "ETH/USD"}).json()
        assert [a["id"] for a in history] == ["alert-1"]

    def test_price_alerts(self, client: TestClient, app) -> None:
        rows = client.get("/api/price-alerts", params={"unresolved": "true"}).json()
        assert rows[0]["id"] == 7
        app.state.monitor_store.get_price_alerts.assert_awaited_once_with(
            symbol=None, unresolved_only=True, limit=100
        )


class TestHealthApi:
    def test_no_result_yet(self, client: TestClient) -> None:
        assert client.get("/api/health").status_code == 404

    def test_on_demand_check(self, client: TestClient) -> None:
        response = client.post("/api/health/check")
        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["stale"] == 1
        assert body["statuses"][0]["issues"] == ["STALE"]

    def test_check_failure_is_503(self, client: TestClient, app) -> None:
        app.state.anomaly_detector.run_once.side_effect = StorageError("locked")
        response = client.post("/api/health/check")
        assert response.status_code == 503
        assert "locked" in response.json()["error"]

    def test_config_roundtrip(self, client: TestClient) -> None:
        assert client.get("/api/health/config").json()["min_data_points"] == 3

        response = client.put("/api/health/config", json={"max_deviation": "0.05"})
        assert response.status_code == 200
        assert Decimal(response.json()["max_deviation"]) == Decimal("0.05")

        assert client.put("/api/health/config", json={"bogus": 1}).status_code == 400


class TestConsensusApi:
    def test_all_and_single(self, client: TestClient) -> None:
        payload = client.get("/api/consensus").json()
        assert payload[0]["consensus_price"] == "3500"
        assert client.get("/api/consensus", params={"symbol": "BTC/USD"}).status_code == 404

    def test_status(self, client: TestClient) -> None:
        assert client.get("/api/status").json() == {
            "monitor": {"running": True, "cycles": 3},
            "detector_running": False,
        }
