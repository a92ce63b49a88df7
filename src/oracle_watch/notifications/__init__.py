"""Notification layer -- channel senders and the per-channel isolating dispatcher."""

from oracle_watch.notifications.channels import (
    ChannelSender,
    EmailSender,
    SlackSender,
    TelegramSender,
    WebhookSender,
)
from oracle_watch.notifications.dispatcher import NotificationDispatcher

__all__ = [
    "ChannelSender",
    "EmailSender",
    "NotificationDispatcher",
    "SlackSender",
    "TelegramSender",
    "WebhookSender",
]
