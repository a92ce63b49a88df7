"""Alert rule and alert incident models.

Rules are long-lived operator configuration. Alerts are live incidents, at
most one open per (rule, symbol). Both round-trip through plain dicts
(``to_dict``/``from_dict``) for storage and the JSON control surface.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class AlertSeverity(str, Enum):
    """Alert severity, lowest to highest."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class ConditionType(str, Enum):
    """Metric a condition compares against its threshold."""

    PRICE_DEVIATION = "price_deviation"  # fraction
    DATA_STALENESS = "data_staleness"  # milliseconds
    PROTOCOL_DOWN = "protocol_down"  # count of outlier/unreachable sources
    VOLUME_ANOMALY = "volume_anomaly"  # reserved, always false


class RuleLogic(str, Enum):
    """How per-condition results combine."""

    AND = "AND"
    OR = "OR"


class ChannelType(str, Enum):
    """Notification transport."""

    WEBHOOK = "webhook"
    EMAIL = "email"
    SLACK = "slack"
    TELEGRAM = "telegram"


class AlertStatus(str, Enum):
    """Alert lifecycle state."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass
class AlertCondition:
    """One clause of a rule."""

    type: ConditionType
    threshold: Decimal
    symbol: str | None = None
    protocol: str | None = None
    duration_ms: int | None = None
    consecutive_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "threshold": str(self.threshold),
            "symbol": self.symbol,
            "protocol": self.protocol,
            "duration_ms": self.duration_ms,
            "consecutive_count": self.consecutive_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertCondition":
        try:
            threshold = Decimal(str(data["threshold"]))
        except KeyError as e:
            raise ValueError("condition is missing 'threshold'") from e
        except InvalidOperation as e:
            raise ValueError(f"invalid threshold: {data['threshold']!r}") from e
        return cls(
            type=ConditionType(data["type"]),
            threshold=threshold,
            symbol=data.get("symbol"),
            protocol=data.get("protocol"),
            duration_ms=_optional_int(data.get("duration_ms")),
            consecutive_count=_optional_int(data.get("consecutive_count")),
        )


@dataclass
class NotificationChannel:
    """A delivery target attached to a rule; ``config`` is channel specific."""

    type: ChannelType
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "config": dict(self.config), "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationChannel":
        return cls(
            type=ChannelType(data["type"]),
            config=dict(data.get("config") or {}),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class AlertRule:
    """Operator-defined rule: conditions, logic, cooldown and channels."""

    id: str
    name: str
    severity: AlertSeverity
    conditions: list[AlertCondition]
    logic: RuleLogic = RuleLogic.OR
    cooldown_ms: int = 300_000
    max_occurrences: int | None = None
    channels: list[NotificationChannel] = field(default_factory=list)
    enabled: bool = True
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "severity": self.severity.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "logic": self.logic.value,
            "cooldown_ms": self.cooldown_ms,
            "max_occurrences": self.max_occurrences,
            "channels": [c.to_dict() for c in self.channels],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertRule":
        """Parse a rule document. Raises ValueError on missing or invalid fields."""
        for required in ("id", "name", "severity", "conditions"):
            if required not in data:
                raise ValueError(f"Missing required field: {required}")
        try:
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                description=str(data.get("description", "")),
                enabled=bool(data.get("enabled", True)),
                severity=AlertSeverity(data["severity"]),
                conditions=[AlertCondition.from_dict(c) for c in data["conditions"]],
                logic=RuleLogic(data.get("logic", RuleLogic.OR.value)),
                cooldown_ms=int(data.get("cooldown_ms", 300_000)),
                max_occurrences=_optional_int(data.get("max_occurrences")),
                channels=[NotificationChannel.from_dict(c) for c in data.get("channels", [])],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid rule document: {e}") from e


@dataclass
class Alert:
    """A live incident for one (rule, symbol) pair."""

    id: str
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    title: str
    message: str
    symbol: str
    context: dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.OPEN
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    acknowledged_at: float | None = None
    acknowledged_by: str | None = None
    resolved_at: float | None = None
    resolution: str | None = None
    occurrence_count: int = 1

    @property
    def is_open(self) -> bool:
        return self.status is AlertStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "symbol": self.symbol,
            "context": self.context,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "acknowledged_at": self.acknowledged_at,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at,
            "resolution": self.resolution,
            "occurrence_count": self.occurrence_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        return cls(
            id=data["id"],
            rule_id=data["rule_id"],
            rule_name=data.get("rule_name", ""),
            severity=AlertSeverity(data["severity"]),
            title=data["title"],
            message=data["message"],
            symbol=data["symbol"],
            context=dict(data.get("context") or {}),
            status=AlertStatus(data["status"]),
            created_at=float(data["created_at"]),
            updated_at=float(data.get("updated_at", data["created_at"])),
            acknowledged_at=data.get("acknowledged_at"),
            acknowledged_by=data.get("acknowledged_by"),
            resolved_at=data.get("resolved_at"),
            resolution=data.get("resolution"),
            occurrence_count=int(data.get("occurrence_count", 1)),
        )


@dataclass
class Notification:
    """Rendered, channel-independent alert payload. Senders only read it."""

    alert_id: str
    title: str
    message: str
    severity: str
    symbol: str
    context: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "symbol": self.symbol,
            "context": self.context,
            "created_at": datetime.fromtimestamp(self.created_at, tz=timezone.utc).isoformat(),
        }


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)
