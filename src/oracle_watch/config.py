"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceSettings(BaseSettings):
    """Upstream price sources and their endpoint lists.

    Endpoint lists are in priority order: adapters call the first entry and
    fall back to the next one exactly once per call.
    """

    model_config = SettingsConfigDict(env_prefix="SOURCES_")

    enabled: list[str] = ["chainlink", "pyth", "exchanges"]
    exchange_ids: list[str] = ["coinbase", "kraken"]  # ccxt ids used as off-chain sources
    chainlink_rpc_urls: list[str] = [
        "https://ethereum.publicnode.com",
        "https://eth.llamarpc.com",
        "https://rpc.ankr.com/eth",
    ]
    pyth_endpoints: list[str] = [
        "https://hermes.pyth.network",
        "https://hermes-beta.pyth.network",
    ]
    request_timeout: float = 10.0  # seconds per upstream request


class CacheSettings(BaseSettings):
    """Observation cache parameters."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    ttl_ms: int = 30_000  # entries older than this are treated as absent


class ConsensusSettings(BaseSettings):
    """Consensus computation and reference cross-check."""

    model_config = SettingsConfigDict(env_prefix="CONSENSUS_")

    outlier_threshold: Decimal = Decimal("0.01")  # 1% from consensus marks an outlier
    reference_exchange: str = "binance"  # ccxt id backing the reference price


class HealthSettings(BaseSettings):
    """Health checker and anomaly detector thresholds.

    All fields configurable via HEALTH_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="HEALTH_")

    max_price_age_ms: int = 5 * 60 * 1000  # 5 minutes
    max_deviation: Decimal = Decimal("0.02")  # 2% from window mean
    min_data_points: int = 3  # distinct sources required
    lookback_ms: int = 60 * 60 * 1000  # 1 hour of observations per check
    max_rows: int = 50  # cap on observations read per check
    check_interval_ms: int = 60 * 1000  # scheduler tick
    suppression_window_ms: int = 15 * 60 * 1000  # no duplicate alert within 15 min
    discovery_window_ms: int = 24 * 60 * 60 * 1000  # symbols seen in the last day


class MonitorSettings(BaseSettings):
    """Collection loop: which symbols to poll and how often."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_")

    symbols: list[str] = ["ETH/USD", "BTC/USD", "LINK/USD", "SOL/USD"]
    poll_interval_ms: int = 30_000


class AlertSettings(BaseSettings):
    """Rule engine behavior."""

    model_config = SettingsConfigDict(env_prefix="ALERTS_")

    # "rule" keeps one cooldown clock per rule across all symbols (legacy
    # behavior); "rule_symbol" keys the cooldown by (rule, symbol).
    cooldown_scope: Literal["rule", "rule_symbol"] = "rule"
    auto_resolve: bool = True
    seed_default_rules: bool = True


class NotificationSettings(BaseSettings):
    """Notification channel credentials and defaults."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    default_webhook_url: str = ""
    timeout: float = 10.0  # seconds per delivery attempt

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_sender: str = "oracle-watch@localhost"
    smtp_starttls: bool = True

    slack_webhook_url: str = ""
    telegram_bot_token: SecretStr = SecretStr("")
    telegram_chat_ids: list[str] = []

    # Channel types used for anomaly-detector notifications
    detector_channels: list[str] = ["webhook"]


class StorageSettings(BaseSettings):
    """SQLite storage location."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/oracle_watch.db"


class ApiSettings(BaseSettings):
    """JSON control surface server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    sources: SourceSettings = SourceSettings()
    cache: CacheSettings = CacheSettings()
    consensus: ConsensusSettings = ConsensusSettings()
    health: HealthSettings = HealthSettings()
    monitor: MonitorSettings = MonitorSettings()
    alerts: AlertSettings = AlertSettings()
    notifications: NotificationSettings = NotificationSettings()
    storage: StorageSettings = StorageSettings()
    api: ApiSettings = ApiSettings()
