"""Persistence layer.

Provides the aiosqlite database manager, the observation/anomaly-alert
store, and the SQLite-backed alert rule store.
"""

from oracle_watch.data.database import Database
from oracle_watch.data.models import PriceAlertRecord
from oracle_watch.data.store import MonitorStore, SqliteAlertStore

__all__ = ["Database", "MonitorStore", "PriceAlertRecord", "SqliteAlertStore"]
