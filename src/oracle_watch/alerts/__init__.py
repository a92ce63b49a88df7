"""Alerting layer -- rule models, default rules, alert store, and the rule engine."""

from oracle_watch.alerts.engine import RuleEngine, new_alert_id
from oracle_watch.alerts.models import (
    Alert,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    ChannelType,
    ConditionType,
    Notification,
    NotificationChannel,
    RuleLogic,
)
from oracle_watch.alerts.rules import default_rules
from oracle_watch.alerts.store import AlertStore, InMemoryAlertStore

__all__ = [
    "Alert",
    "AlertCondition",
    "AlertRule",
    "AlertSeverity",
    "AlertStatus",
    "AlertStore",
    "ChannelType",
    "ConditionType",
    "InMemoryAlertStore",
    "Notification",
    "NotificationChannel",
    "RuleEngine",
    "RuleLogic",
    "default_rules",
    "new_alert_id",
]
