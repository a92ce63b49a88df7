"""Default alert rules seeded into an empty rule store."""

from decimal import Decimal

from oracle_watch.alerts.models import (
    AlertCondition,
    AlertRule,
    AlertSeverity,
    ChannelType,
    ConditionType,
    NotificationChannel,
    RuleLogic,
)

DEFAULT_EMAIL_RECIPIENT = "admin@example.com"
DEFAULT_SLACK_CHANNEL = "#alerts"


def default_rules(webhook_url: str | None = None) -> list[AlertRule]:
    """Return fresh copies of the four built-in rules.

    Webhook channels carry ``webhook_url`` when given; otherwise the
    dispatcher's configured default webhook URL applies at send time.
    """
    webhook_config = {"url": webhook_url} if webhook_url else {}

    def webhook() -> NotificationChannel:
        return NotificationChannel(type=ChannelType.WEBHOOK, config=dict(webhook_config))

    return [
        AlertRule(
            id="rule-price-deviation-warning",
            name="Price deviation warning",
            description="Triggers when cross-oracle deviation reaches 1%",
            severity=AlertSeverity.WARNING,
            conditions=[
                AlertCondition(type=ConditionType.PRICE_DEVIATION, threshold=Decimal("0.01")),
            ],
            logic=RuleLogic.OR,
            cooldown_ms=300_000,
            channels=[webhook()],
        ),
        AlertRule(
            id="rule-price-deviation-critical",
            name="Price deviation critical",
            description="Triggers when cross-oracle deviation reaches 5%",
            severity=AlertSeverity.CRITICAL,
            conditions=[
                AlertCondition(type=ConditionType.PRICE_DEVIATION, threshold=Decimal("0.05")),
            ],
            logic=RuleLogic.OR,
            cooldown_ms=600_000,
            channels=[
                webhook(),
                NotificationChannel(
                    type=ChannelType.EMAIL, config={"to": DEFAULT_EMAIL_RECIPIENT}
                ),
            ],
        ),
        AlertRule(
            id="rule-data-staleness",
            name="Data staleness",
            description="Triggers when no source has updated for 5 minutes",
            severity=AlertSeverity.WARNING,
            conditions=[
                AlertCondition(type=ConditionType.DATA_STALENESS, threshold=Decimal("300000")),
            ],
            logic=RuleLogic.OR,
            cooldown_ms=600_000,
            channels=[webhook()],
        ),
        AlertRule(
            id="rule-protocol-down",
            name="Protocol down",
            description="Triggers after 3 consecutive source fetch failures",
            severity=AlertSeverity.CRITICAL,
            conditions=[
                AlertCondition(
                    type=ConditionType.PROTOCOL_DOWN,
                    threshold=Decimal("3"),
                    consecutive_count=3,
                ),
            ],
            logic=RuleLogic.OR,
            cooldown_ms=900_000,
            channels=[
                webhook(),
                NotificationChannel(
                    type=ChannelType.SLACK, config={"channel": DEFAULT_SLACK_CHANNEL}
                ),
            ],
        ),
    ]
