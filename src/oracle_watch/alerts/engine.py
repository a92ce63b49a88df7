"""Rule engine -- evaluates alert rules against consensus output and owns alert lifecycle.

Per rule and symbol:
  1. skip disabled rules
  2. evaluate conditions, combined with the rule's AND/OR logic
  3. under the (rule, symbol) lock, look for an open alert:
     - found: bump occurrence_count and refresh context, no notification
     - not found: skip if in cooldown or max_occurrences reached,
       otherwise create the alert, record the trigger, and dispatch

Cooldown is kept per rule by default, so a rule that fired for one symbol is
quiet for every symbol until the cooldown ends. ``cooldown_scope="rule_symbol"``
keys it by (rule, symbol) instead.
"""

import asyncio
import secrets
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from oracle_watch.alerts.models import (
    Alert,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    ConditionType,
    Notification,
    RuleLogic,
)
from oracle_watch.alerts.store import AlertStore
from oracle_watch.config import AlertSettings
from oracle_watch.logging import get_logger
from oracle_watch.models import ConsensusResult

if TYPE_CHECKING:
    from oracle_watch.notifications.dispatcher import NotificationDispatcher

logger = get_logger(__name__)

_SEVERITY_LABELS = {
    AlertSeverity.INFO: "[INFO]",
    AlertSeverity.WARNING: "[WARNING]",
    AlertSeverity.CRITICAL: "[CRITICAL]",
    AlertSeverity.EMERGENCY: "[EMERGENCY]",
}

_AUTO_RESOLUTION = "auto-resolved: conditions cleared"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
    return "".join(reversed(digits)) or "0"


def new_alert_id() -> str:
    """Time-prefixed random id, e.g. ``alert-lq2x9k3a-4f1c0e9b2d``."""
    return f"alert-{_base36(int(time.time() * 1000))}-{secrets.token_hex(5)}"


class RuleEngine:
    """Holds alert rules, evaluates them, and manages the alerts they raise.

    Args:
        store: Rule and alert persistence.
        dispatcher: Notification dispatcher; new alerts are submitted to it
            as tracked background tasks. None disables notifications.
        settings: Cooldown scope and auto-resolve behavior.
        clock: Returns the current Unix time in seconds.
        id_factory: Produces unique alert ids.
    """

    def __init__(
        self,
        store: AlertStore,
        dispatcher: "NotificationDispatcher | None" = None,
        settings: AlertSettings | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = new_alert_id,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._settings = settings or AlertSettings()
        self._clock = clock
        self._id_factory = id_factory
        self._last_trigger: dict[tuple[str, str | None], float] = {}
        self._trigger_counts: dict[str, int] = defaultdict(int)
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    # ──────────────────────────────────────────────
    # Rule management
    # ──────────────────────────────────────────────

    async def seed_rules(self, rules: list[AlertRule]) -> int:
        """Store ``rules`` if the rule store is empty. Returns how many were added."""
        if await self._store.list_rules():
            return 0
        for rule in rules:
            await self._store.save_rule(rule)
        logger.info("default_rules_seeded", count=len(rules))
        return len(rules)

    async def list_rules(self) -> list[AlertRule]:
        return await self._store.list_rules()

    async def get_rule(self, rule_id: str) -> AlertRule | None:
        return await self._store.get_rule(rule_id)

    async def add_rule(self, rule: AlertRule) -> AlertRule:
        """Add a new rule. Raises ValueError if the id is already taken."""
        if await self._store.get_rule(rule.id) is not None:
            raise ValueError(f"Rule '{rule.id}' already exists")
        await self._store.save_rule(rule)
        logger.info("alert_rule_added", rule_id=rule.id, name=rule.name)
        return rule

    async def update_rule(self, rule_id: str, changes: dict[str, Any]) -> AlertRule | None:
        """Apply field changes to a rule. Returns None if the rule does not exist.

        Raises ValueError if the merged rule document is invalid.
        """
        current = await self._store.get_rule(rule_id)
        if current is None:
            return None
        merged = current.to_dict()
        merged.update(changes)
        merged["id"] = rule_id
        updated = AlertRule.from_dict(merged)
        await self._store.save_rule(updated)
        logger.info("alert_rule_updated", rule_id=rule_id, fields=sorted(changes))
        return updated

    async def delete_rule(self, rule_id: str) -> bool:
        deleted = await self._store.delete_rule(rule_id)
        if deleted:
            self._trigger_counts.pop(rule_id, None)
            for key in [k for k in self._last_trigger if k[0] == rule_id]:
                del self._last_trigger[key]
            logger.info("alert_rule_deleted", rule_id=rule_id)
        return deleted

    async def toggle_rule(self, rule_id: str, enabled: bool | None = None) -> AlertRule | None:
        """Set or flip a rule's enabled flag. Returns None if the rule does not exist."""
        rule = await self._store.get_rule(rule_id)
        if rule is None:
            return None
        rule.enabled = (not rule.enabled) if enabled is None else enabled
        await self._store.save_rule(rule)
        logger.info("alert_rule_toggled", rule_id=rule_id, enabled=rule.enabled)
        return rule

    # ──────────────────────────────────────────────
    # Evaluation
    # ──────────────────────────────────────────────

    async def evaluate(
        self,
        result: ConsensusResult,
        source_failures: dict[str, int] | None = None,
    ) -> list[Alert]:
        """Evaluate every rule against one symbol's consensus. Returns newly created alerts."""
        failures = source_failures or {}
        created: list[Alert] = []
        for rule in await self._store.list_rules():
            if not rule.enabled:
                continue
            if self._rule_matches(rule, result, failures):
                alert = await self._trigger(rule, result, failures)
                if alert is not None:
                    created.append(alert)
            elif self._settings.auto_resolve and result.has_consensus:
                await self._auto_resolve(rule, result.symbol)
        return created

    def _rule_matches(
        self, rule: AlertRule, result: ConsensusResult, failures: dict[str, int]
    ) -> bool:
        if not rule.conditions:
            return False
        outcomes = [self._condition_matches(c, result, failures) for c in rule.conditions]
        if rule.logic is RuleLogic.AND:
            return all(outcomes)
        return any(outcomes)

    def _condition_matches(
        self, condition: AlertCondition, result: ConsensusResult, failures: dict[str, int]
    ) -> bool:
        if condition.symbol is not None and condition.symbol != result.symbol:
            return False

        if condition.type is ConditionType.PRICE_DEVIATION:
            if condition.protocol is not None:
                deviation = result.per_source_deviation.get(condition.protocol)
                return deviation is not None and abs(deviation) >= condition.threshold
            return result.max_deviation is not None and result.max_deviation >= condition.threshold

        if condition.type is ConditionType.DATA_STALENESS:
            if result.latest_observed_at is None:
                return False
            age_ms = (self._clock() - result.latest_observed_at) * 1000
            limit = condition.duration_ms if condition.duration_ms else condition.threshold
            return Decimal(str(age_ms)) >= Decimal(limit)

        if condition.type is ConditionType.PROTOCOL_DOWN:
            min_failures = condition.consecutive_count or 1
            down = set(result.outlier_sources)
            down.update(s for s, n in failures.items() if n >= min_failures)
            if condition.protocol is not None:
                down &= {condition.protocol}
            return Decimal(len(down)) >= condition.threshold

        # VOLUME_ANOMALY is reserved
        return False

    def _cooldown_key(self, rule_id: str, symbol: str) -> tuple[str, str | None]:
        if self._settings.cooldown_scope == "rule_symbol":
            return (rule_id, symbol)
        return (rule_id, None)

    async def _trigger(
        self, rule: AlertRule, result: ConsensusResult, failures: dict[str, int]
    ) -> Alert | None:
        now = self._clock()
        context = self._build_context(rule, result, failures)

        async with self._locks[(rule.id, result.symbol)]:
            existing = await self._store.find_open_alert(rule.id, result.symbol)
            if existing is not None:
                existing.occurrence_count += 1
                existing.context = context
                existing.updated_at = now
                await self._store.save_alert(existing)
                logger.debug(
                    "alert_occurrence_recorded",
                    alert_id=existing.id,
                    rule_id=rule.id,
                    symbol=result.symbol,
                    occurrences=existing.occurrence_count,
                )
                return None

            cooldown_key = self._cooldown_key(rule.id, result.symbol)
            last = self._last_trigger.get(cooldown_key)
            if last is not None and (now - last) * 1000 < rule.cooldown_ms:
                logger.debug("alert_rule_in_cooldown", rule_id=rule.id, symbol=result.symbol)
                return None
            if (
                rule.max_occurrences is not None
                and self._trigger_counts[rule.id] >= rule.max_occurrences
            ):
                logger.debug("alert_rule_max_occurrences", rule_id=rule.id, symbol=result.symbol)
                return None

            # Reserve the trigger before awaiting the store; other symbols
            # hold different locks and must see it.
            self._last_trigger[cooldown_key] = now
            self._trigger_counts[rule.id] += 1

            alert = Alert(
                id=self._id_factory(),
                rule_id=rule.id,
                rule_name=rule.name,
                severity=rule.severity,
                title=f"{_SEVERITY_LABELS[rule.severity]} {result.symbol} - {rule.name}",
                message=self._render_message(rule, result, now),
                symbol=result.symbol,
                context=context,
                created_at=now,
                updated_at=now,
            )
            try:
                await self._store.save_alert(alert)
            except Exception:
                self._trigger_counts[rule.id] -= 1
                if last is None:
                    self._last_trigger.pop(cooldown_key, None)
                else:
                    self._last_trigger[cooldown_key] = last
                raise

        logger.info(
            "alert_created",
            alert_id=alert.id,
            rule_id=rule.id,
            severity=alert.severity.value,
            symbol=alert.symbol,
        )

        if self._dispatcher is not None and rule.channels:
            self._dispatcher.submit(
                rule.channels,
                Notification(
                    alert_id=alert.id,
                    title=alert.title,
                    message=alert.message,
                    severity=alert.severity.value,
                    symbol=alert.symbol,
                    context=alert.context,
                    created_at=alert.created_at,
                ),
            )
        return alert

    async def _auto_resolve(self, rule: AlertRule, symbol: str) -> None:
        async with self._locks[(rule.id, symbol)]:
            existing = await self._store.find_open_alert(rule.id, symbol)
            if existing is None:
                return
            self._close(existing, AlertStatus.RESOLVED, resolution=_AUTO_RESOLUTION)
            await self._store.save_alert(existing)
        logger.info("alert_auto_resolved", alert_id=existing.id, rule_id=rule.id, symbol=symbol)

    @staticmethod
    def _build_context(
        rule: AlertRule, result: ConsensusResult, failures: dict[str, int]
    ) -> dict[str, Any]:
        return {
            "rule_name": rule.name,
            "consensus": result.to_dict(),
            "source_failures": {s: n for s, n in failures.items() if n},
        }

    @staticmethod
    def _render_message(rule: AlertRule, result: ConsensusResult, now: float) -> str:
        deviation = result.max_deviation if result.max_deviation is not None else Decimal("0")
        price = result.consensus_price if result.consensus_price is not None else Decimal("0")
        lines = [
            f"Symbol: {result.symbol}",
            f"Rule: {rule.name}",
            f"Deviation: {deviation * 100:.2f}%",
            f"Consensus price: ${price:.4f}",
            f"Outlier sources: {', '.join(result.outlier_sources) or 'none'}",
            f"Time: {datetime.fromtimestamp(now, tz=timezone.utc).isoformat()}",
        ]
        return "\n".join(lines)

    # ──────────────────────────────────────────────
    # Alert operations
    # ──────────────────────────────────────────────

    def _close(self, alert: Alert, status: AlertStatus, resolution: str | None = None) -> None:
        now = self._clock()
        alert.status = status
        alert.updated_at = now
        if status is AlertStatus.RESOLVED:
            alert.resolved_at = now
            alert.resolution = resolution

    async def acknowledge_alert(self, alert_id: str, user: str | None = None) -> Alert | None:
        """Acknowledge an open alert. Returns None if missing or not open."""
        alert = await self._store.get_alert(alert_id)
        if alert is None:
            return None
        async with self._locks[(alert.rule_id, alert.symbol)]:
            # Re-read under the lock so a concurrent occurrence update is kept.
            alert = await self._store.get_alert(alert_id)
            if alert is None or alert.status is not AlertStatus.OPEN:
                return None
            self._close(alert, AlertStatus.ACKNOWLEDGED)
            alert.acknowledged_at = alert.updated_at
            alert.acknowledged_by = user
            await self._store.save_alert(alert)
        logger.info("alert_acknowledged", alert_id=alert_id, user=user)
        return alert

    async def resolve_alert(self, alert_id: str, resolution: str | None = None) -> Alert | None:
        """Resolve an open or acknowledged alert. Returns None if missing or already resolved."""
        alert = await self._store.get_alert(alert_id)
        if alert is None:
            return None
        async with self._locks[(alert.rule_id, alert.symbol)]:
            alert = await self._store.get_alert(alert_id)
            if alert is None or alert.status is AlertStatus.RESOLVED:
                return None
            self._close(alert, AlertStatus.RESOLVED, resolution=resolution)
            await self._store.save_alert(alert)
        logger.info("alert_resolved", alert_id=alert_id, resolution=resolution)
        return alert

    async def list_alerts(
        self, status: AlertStatus | None = None, symbol: str | None = None
    ) -> list[Alert]:
        return await self._store.list_alerts(status=status, symbol=symbol)

    async def get_alert_history(self, symbol: str) -> list[Alert]:
        """Every alert ever raised for ``symbol``, newest first."""
        return await self._store.list_alerts(symbol=symbol)

    async def get_stats(self) -> dict[str, Any]:
        alerts = await self._store.list_alerts()
        rules = await self._store.list_rules()
        by_status = {s.value: 0 for s in AlertStatus}
        by_severity = {s.value: 0 for s in AlertSeverity}
        for alert in alerts:
            by_status[alert.status.value] += 1
            by_severity[alert.severity.value] += 1
        return {
            "total_alerts": len(alerts),
            "by_status": by_status,
            "by_severity": by_severity,
            "total_rules": len(rules),
            "enabled_rules": sum(1 for r in rules if r.enabled),
        }

    async def drain(self) -> None:
        """Wait for every notification this engine has submitted."""
        if self._dispatcher is not None:
            await self._dispatcher.drain()
