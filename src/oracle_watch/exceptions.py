"""Custom exceptions for the oracle monitor.

All adapter, storage and notification exceptions live here to avoid
circular imports between the sources, data and notifications packages.
"""


class OracleWatchError(Exception):
    """Base exception for all oracle monitor errors."""


class SourceError(OracleWatchError):
    """Raised by a source adapter when an upstream endpoint fails or returns bad data."""


class SourceHTTPError(SourceError):
    """Raised when an upstream endpoint answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class StorageError(OracleWatchError):
    """Raised when the persistent store cannot complete a read or write."""


class NotificationError(OracleWatchError):
    """Raised when a notification channel fails to deliver."""


class ChannelConfigError(NotificationError):
    """Raised when a channel is missing required configuration (URL, SMTP host, token)."""
