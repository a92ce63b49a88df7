"""Notification dispatcher -- fans one alert out to its channels.

Each channel is sent independently. A failure on one channel is logged with
the channel type and alert id and never affects the other channels or the
alert record. ``submit`` schedules a dispatch as a tracked background task so
alert persistence does not wait on network delivery; ``drain`` awaits every
outstanding dispatch.
"""

import asyncio

import httpx

from oracle_watch.alerts.models import ChannelType, Notification, NotificationChannel
from oracle_watch.config import NotificationSettings
from oracle_watch.logging import get_logger
from oracle_watch.notifications.channels import (
    ChannelSender,
    EmailSender,
    SlackSender,
    TelegramSender,
    WebhookSender,
)

logger = get_logger(__name__)


class NotificationDispatcher:
    """Routes notifications to channel senders with per-channel failure isolation.

    Args:
        settings: Channel credentials and defaults.
        client: Optional shared httpx client for HTTP channels.
        senders: Optional sender overrides keyed by channel type.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        client: httpx.AsyncClient | None = None,
        senders: dict[ChannelType, ChannelSender] | None = None,
    ) -> None:
        self._settings = settings or NotificationSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._settings.timeout)
        self._senders: dict[ChannelType, ChannelSender] = {
            ChannelType.WEBHOOK: WebhookSender(self._client, self._settings),
            ChannelType.SLACK: SlackSender(self._client, self._settings),
            ChannelType.TELEGRAM: TelegramSender(self._client, self._settings),
            ChannelType.EMAIL: EmailSender(self._settings),
        }
        if senders:
            self._senders.update(senders)
        self._tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def dispatch(
        self, channels: list[NotificationChannel], notification: Notification
    ) -> list[bool]:
        """Send to every enabled channel concurrently.

        Returns one delivery flag per entry in ``channels``; disabled channels
        report False.
        """
        results = await asyncio.gather(
            *(self._send_one(channel, notification) for channel in channels)
        )
        delivered = sum(results)
        logger.info(
            "notification_dispatched",
            alert_id=notification.alert_id,
            channels=len(channels),
            delivered=delivered,
        )
        return list(results)

    def submit(
        self, channels: list[NotificationChannel], notification: Notification
    ) -> asyncio.Task:  # type: ignore[type-arg]
        """Schedule ``dispatch`` as a tracked background task."""
        task = asyncio.create_task(self.dispatch(channels, notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()

    async def _send_one(self, channel: NotificationChannel, notification: Notification) -> bool:
        if not channel.enabled:
            return False
        sender = self._senders.get(channel.type)
        if sender is None:
            logger.error(
                "notification_channel_unsupported",
                channel=channel.type.value,
                alert_id=notification.alert_id,
            )
            return False
        try:
            await sender.send(notification, channel.config)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "notification_failed",
                channel=channel.type.value,
                alert_id=notification.alert_id,
                error=str(e),
            )
            return False
        logger.debug(
            "notification_sent", channel=channel.type.value, alert_id=notification.alert_id
        )
        return True
