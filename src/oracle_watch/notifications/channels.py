"""Notification channel senders.

Each sender delivers one Notification over one transport and raises
NotificationError (or ChannelConfigError for missing configuration) on
failure. Senders never retry; the dispatcher isolates failures per channel.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, ClassVar

import httpx

from oracle_watch.alerts.models import ChannelType, Notification
from oracle_watch.config import NotificationSettings
from oracle_watch.exceptions import ChannelConfigError, NotificationError


class ChannelSender(ABC):
    """Delivers notifications over one channel type."""

    channel_type: ClassVar[ChannelType]

    @abstractmethod
    async def send(self, notification: Notification, config: dict[str, Any]) -> None:
        """Deliver ``notification`` using the channel's per-rule ``config``."""


class _HttpSender(ChannelSender):
    def __init__(self, client: httpx.AsyncClient, settings: NotificationSettings) -> None:
        self._client = client
        self._settings = settings

    async def _post_json(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(url, json=payload, timeout=self._settings.timeout)
        except httpx.HTTPError as e:
            raise NotificationError(f"{self.channel_type.value} request failed: {e}") from e
        if not response.is_success:
            raise NotificationError(
                f"{self.channel_type.value} returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        return response


class WebhookSender(_HttpSender):
    """HTTP POST of the alert as JSON. Non-2xx is a delivery failure."""

    channel_type = ChannelType.WEBHOOK

    async def send(self, notification: Notification, config: dict[str, Any]) -> None:
        url = config.get("url") or self._settings.default_webhook_url
        if not url:
            raise ChannelConfigError("webhook channel has no target URL")
        await self._post_json(url, notification.to_dict())


class SlackSender(_HttpSender):
    """Slack incoming webhook."""

    channel_type = ChannelType.SLACK

    async def send(self, notification: Notification, config: dict[str, Any]) -> None:
        url = config.get("webhook_url") or self._settings.slack_webhook_url
        if not url:
            raise ChannelConfigError("slack channel has no incoming webhook URL")
        payload: dict[str, Any] = {"text": f"*{notification.title}*\n{notification.message}"}
        if config.get("channel"):
            payload["channel"] = config["channel"]
        await self._post_json(url, payload)


class TelegramSender(_HttpSender):
    """Telegram Bot API ``sendMessage`` to every configured chat."""

    channel_type = ChannelType.TELEGRAM
    API_BASE = "https://api.telegram.org"

    async def send(self, notification: Notification, config: dict[str, Any]) -> None:
        token = self._settings.telegram_bot_token.get_secret_value()
        if not token:
            raise ChannelConfigError("telegram bot token is not configured")
        chat_ids = [config["chat_id"]] if config.get("chat_id") else self._settings.telegram_chat_ids
        if not chat_ids:
            raise ChannelConfigError("telegram channel has no chat id")

        text = f"{notification.title}\n\n{notification.message}"
        for chat_id in chat_ids:
            response = await self._post_json(
                f"{self.API_BASE}/bot{token}/sendMessage",
                {"chat_id": chat_id, "text": text},
            )
            body = response.json()
            if not body.get("ok", False):
                raise NotificationError(
                    f"telegram rejected message for chat {chat_id}: {body.get('description')}"
                )


class EmailSender(ChannelSender):
    """SMTP delivery, executed in a worker thread to keep the event loop free."""

    channel_type = ChannelType.EMAIL

    def __init__(self, settings: NotificationSettings) -> None:
        self._settings = settings

    async def send(self, notification: Notification, config: dict[str, Any]) -> None:
        if not self._settings.smtp_host:
            raise ChannelConfigError("SMTP host is not configured")
        recipient = config.get("to")
        if not recipient:
            raise ChannelConfigError("email channel has no recipient")

        msg = EmailMessage()
        msg["Subject"] = notification.title
        msg["From"] = self._settings.smtp_sender
        msg["To"] = recipient
        msg.set_content(notification.message)

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e

    def _deliver(self, msg: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.timeout) as server:
            if s.smtp_starttls:
                server.starttls()
            if s.smtp_username:
                server.login(s.smtp_username, s.smtp_password.get_secret_value())
            server.send_message(msg)
