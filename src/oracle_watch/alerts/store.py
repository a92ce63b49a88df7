"""Alert store interface and its in-memory implementation.

The rule engine owns alert lifecycle and talks to storage only through
AlertStore. InMemoryAlertStore backs tests and store-less deployments;
SqliteAlertStore (oracle_watch.data.store) persists across restarts.
"""

import copy
from abc import ABC, abstractmethod

from oracle_watch.alerts.models import Alert, AlertRule, AlertStatus


class AlertStore(ABC):
    """Persistence for alert rules and alert incidents."""

    @abstractmethod
    async def list_rules(self) -> list[AlertRule]:
        """All rules, in insertion order."""

    @abstractmethod
    async def get_rule(self, rule_id: str) -> AlertRule | None: ...

    @abstractmethod
    async def save_rule(self, rule: AlertRule) -> None:
        """Insert or replace a rule by id."""

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if it did not exist."""

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Alert | None: ...

    @abstractmethod
    async def find_open_alert(self, rule_id: str, symbol: str) -> Alert | None:
        """The open alert for (rule, symbol), if any."""

    @abstractmethod
    async def save_alert(self, alert: Alert) -> None:
        """Insert or replace an alert by id."""

    @abstractmethod
    async def list_alerts(
        self, status: AlertStatus | None = None, symbol: str | None = None
    ) -> list[Alert]:
        """Alerts matching the filters, newest first."""


class InMemoryAlertStore(AlertStore):
    """Dict-backed AlertStore. Returns copies so callers never alias stored state."""

    def __init__(self) -> None:
        self._rules: dict[str, AlertRule] = {}
        self._alerts: dict[str, Alert] = {}

    async def list_rules(self) -> list[AlertRule]:
        return [copy.deepcopy(r) for r in self._rules.values()]

    async def get_rule(self, rule_id: str) -> AlertRule | None:
        rule = self._rules.get(rule_id)
        return copy.deepcopy(rule) if rule is not None else None

    async def save_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = copy.deepcopy(rule)

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def get_alert(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert is not None else None

    async def find_open_alert(self, rule_id: str, symbol: str) -> Alert | None:
        for alert in self._alerts.values():
            if alert.rule_id == rule_id and alert.symbol == symbol and alert.is_open:
                return copy.deepcopy(alert)
        return None

    async def save_alert(self, alert: Alert) -> None:
        self._alerts[alert.id] = copy.deepcopy(alert)

    async def list_alerts(
        self, status: AlertStatus | None = None, symbol: str | None = None
    ) -> list[Alert]:
        matched = [
            copy.deepcopy(a)
            for a in self._alerts.values()
            if (status is None or a.status is status) and (symbol is None or a.symbol == symbol)
        ]
        return sorted(matched, key=lambda a: a.created_at, reverse=True)
