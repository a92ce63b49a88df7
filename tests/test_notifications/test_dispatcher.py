"""Tests for channel senders and the per-channel isolating dispatcher.

HTTP channels run against httpx.MockTransport; SMTP is patched out.
"""

import json
import smtplib
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest
from pydantic import SecretStr

from oracle_watch.alerts.engine import RuleEngine
from oracle_watch.alerts.models import (
    AlertCondition,
    AlertRule,
    AlertSeverity,
    ChannelType,
    ConditionType,
    Notification,
    NotificationChannel,
)
from oracle_watch.alerts.store import InMemoryAlertStore
from oracle_watch.config import NotificationSettings
from oracle_watch.exceptions import ChannelConfigError, NotificationError
from oracle_watch.models import ConsensusResult
from oracle_watch.notifications.channels import (
    ChannelSender,
    EmailSender,
    TelegramSender,
    WebhookSender,
)
from oracle_watch.notifications.dispatcher import NotificationDispatcher


def _notification() -> Notification:
    return Notification(
        alert_id="alert-1",
        title="[WARNING] ETH/USD - Deviation warning",
        message="Symbol: ETH/USD",
        severity="warning",
        symbol="ETH/USD",
        context={"rule_name": "Deviation warning"},
        created_at=1_700_000_000.0,
    )


def _ok_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200))


class RecordingSender(ChannelSender):
    channel_type = ChannelType.WEBHOOK

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[tuple[Notification, dict]] = []
        self.error = error

    async def send(self, notification, config) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((notification, config))


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_failing_channel_does_not_affect_others(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.host == "hooks.fail.test":
                return httpx.Response(500, text="internal error")
            return httpx.Response(200, text="ok")

        settings = NotificationSettings(slack_webhook_url="https://hooks.slack.test/T000")
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(settings, client=client)

        delivered = await dispatcher.dispatch(
            [
                NotificationChannel(
                    type=ChannelType.WEBHOOK, config={"url": "https://hooks.fail.test/a"}
                ),
                NotificationChannel(type=ChannelType.SLACK, config={"channel": "#alerts"}),
            ],
            _notification(),
        )

        assert delivered == [False, True]
        slack = next(r for r in requests if r.url.host == "hooks.slack.test")
        assert json.loads(slack.content) == {
            "text": "*[WARNING] ETH/USD - Deviation warning*\nSymbol: ETH/USD",
            "channel": "#alerts",
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_sender_exception_is_isolated(self) -> None:
        broken = RecordingSender(error=RuntimeError("unexpected"))
        working = RecordingSender()
        dispatcher = NotificationDispatcher(
            NotificationSettings(),
            senders={ChannelType.WEBHOOK: broken, ChannelType.SLACK: working},
        )

        delivered = await dispatcher.dispatch(
            [
                NotificationChannel(type=ChannelType.WEBHOOK),
                NotificationChannel(type=ChannelType.SLACK),
            ],
            _notification(),
        )

        assert delivered == [False, True]
        assert len(working.sent) == 1
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_disabled_channel_is_not_sent(self) -> None:
        sender = RecordingSender()
        dispatcher = NotificationDispatcher(
            NotificationSettings(), senders={ChannelType.WEBHOOK: sender}
        )

        delivered = await dispatcher.dispatch(
            [NotificationChannel(type=ChannelType.WEBHOOK, enabled=False)], _notification()
        )

        assert delivered == [False]
        assert sender.sent == []
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_submit_and_drain(self) -> None:
        sender = RecordingSender()
        dispatcher = NotificationDispatcher(
            NotificationSettings(), senders={ChannelType.WEBHOOK: sender}
        )

        dispatcher.submit([NotificationChannel(type=ChannelType.WEBHOOK)], _notification())
        assert dispatcher.pending == 1
        await dispatcher.drain()

        assert dispatcher.pending == 0
        assert len(sender.sent) == 1
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_rule_engine_alert_reaches_channel(self, clock) -> None:
        sender = RecordingSender()
        dispatcher = NotificationDispatcher(
            NotificationSettings(), senders={ChannelType.WEBHOOK: sender}
        )
        engine = RuleEngine(InMemoryAlertStore(), dispatcher=dispatcher, clock=clock)
        await engine.add_rule(
            AlertRule(
                id="dev",
                name="Deviation",
                severity=AlertSeverity.CRITICAL,
                conditions=[
                    AlertCondition(type=ConditionType.PRICE_DEVIATION, threshold=Decimal("0.01"))
                ],
                channels=[NotificationChannel(type=ChannelType.WEBHOOK, config={"url": "u"})],
            )
        )

        alerts = await engine.evaluate(
            ConsensusResult(
                symbol="ETH/USD",
                source_count=2,
                consensus_price=Decimal("100"),
                max_deviation=Decimal("0.05"),
            )
        )
        await engine.drain()

        notification, config = sender.sent[0]
        assert notification.alert_id == alerts[0].id
        assert notification.severity == "critical"
        assert config == {"url": "u"}
        await dispatcher.close()


class TestWebhookSender:
    @pytest.mark.asyncio
    async def test_posts_notification_json(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sender = WebhookSender(client, NotificationSettings())
            await sender.send(_notification(), {"url": "https://hooks.test/alerts"})

        assert bodies[0]["alert_id"] == "alert-1"
        assert bodies[0]["created_at"] == "2023-11-14T22:13:20+00:00"

    @pytest.mark.asyncio
    async def test_default_url_used_when_unset(self) -> None:
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(200)

        settings = NotificationSettings(default_webhook_url="https://default.test/hook")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await WebhookSender(client, settings).send(_notification(), {})

        assert hosts == ["default.test"]

    @pytest.mark.asyncio
    async def test_missing_url_is_config_error(self) -> None:
        async with httpx.AsyncClient(transport=_ok_transport()) as client:
            with pytest.raises(ChannelConfigError):
                await WebhookSender(client, NotificationSettings()).send(_notification(), {})

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self) -> None:
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(404, text="gone"))
        ) as client:
            with pytest.raises(NotificationError, match="HTTP 404"):
                await WebhookSender(client, NotificationSettings()).send(
                    _notification(), {"url": "https://hooks.test"}
                )


class TestTelegramSender:
    @pytest.mark.asyncio
    async def test_sends_to_every_chat(self) -> None:
        chats: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/botsecret-token/sendMessage"
            chats.append(json.loads(request.content)["chat_id"])
            return httpx.Response(200, json={"ok": True})

        settings = NotificationSettings(
            telegram_bot_token=SecretStr("secret-token"), telegram_chat_ids=["1", "2"]
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await TelegramSender(client, settings).send(_notification(), {})

        assert chats == ["1", "2"]

    @pytest.mark.asyncio
    async def test_rejected_message_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "description": "chat not found"})

        settings = NotificationSettings(telegram_bot_token=SecretStr("t"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(NotificationError, match="chat not found"):
                await TelegramSender(client, settings).send(_notification(), {"chat_id": "9"})

    @pytest.mark.asyncio
    async def test_missing_token_is_config_error(self) -> None:
        async with httpx.AsyncClient(transport=_ok_transport()) as client:
            with pytest.raises(ChannelConfigError):
                await TelegramSender(client, NotificationSettings()).send(_notification(), {})


class TestEmailSender:
    @pytest.mark.asyncio
    async def test_missing_smtp_host_is_config_error(self) -> None:
        with pytest.raises(ChannelConfigError):
            await EmailSender(NotificationSettings()).send(_notification(), {"to": "a@b.c"})

    @pytest.mark.asyncio
    async def test_missing_recipient_is_config_error(self) -> None:
        settings = NotificationSettings(smtp_host="smtp.test")
        with pytest.raises(ChannelConfigError):
            await EmailSender(settings).send(_notification(), {})

    @pytest.mark.asyncio
    async def test_delivers_over_smtp(self, monkeypatch: pytest.MonkeyPatch) -> None:
        smtp_cls = MagicMock()
        server = smtp_cls.return_value.__enter__.return_value
        monkeypatch.setattr(smtplib, "SMTP", smtp_cls)

        settings = NotificationSettings(
            smtp_host="smtp.test",
            smtp_username="bot",
            smtp_password=SecretStr("pw"),
        )
        await EmailSender(settings).send(_notification(), {"to": "admin@example.com"})

        smtp_cls.assert_called_once_with("smtp.test", 587, timeout=settings.timeout)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "pw")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "admin@example.com"
        assert message["Subject"] == "[WARNING] ETH/USD - Deviation warning"
