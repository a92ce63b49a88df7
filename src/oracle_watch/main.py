"""Oracle watch - main entry point and component wiring.

Components are built in dependency order:
  1. Settings and logging
  2. Database and stores (observations, price alerts, rules and alerts)
  3. Source adapters (Chainlink, Pyth, ccxt exchanges) and the observation cache
  4. Observation collector and reference price service
  5. Consensus engine
  6. Notification dispatcher and rule engine (default rules seeded once)
  7. Health checker and anomaly detector
  8. Price monitor

Run with: python -m oracle_watch.main
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from decimal import Decimal

import uvicorn
from fastapi import FastAPI

from oracle_watch.alerts import NotificationChannel, RuleEngine, default_rules
from oracle_watch.alerts.models import ChannelType
from oracle_watch.config import AppSettings
from oracle_watch.consensus import ConsensusEngine
from oracle_watch.data import Database, MonitorStore, SqliteAlertStore
from oracle_watch.health import AnomalyDetector, HealthChecker
from oracle_watch.logging import get_logger, setup_logging
from oracle_watch.market_data import ObservationCache, ObservationCollector, ReferencePriceService
from oracle_watch.models import PriceObservation
from oracle_watch.notifications import NotificationDispatcher
from oracle_watch.orchestrator import PriceMonitor
from oracle_watch.sources import ChainlinkSource, ExchangeSource, PythSource, SourceAdapter


def _build_adapters(settings: AppSettings) -> list[SourceAdapter]:
    """Instantiate the enabled source adapters in configured order."""
    sources = settings.sources
    adapters: list[SourceAdapter] = []
    if "chainlink" in sources.enabled:
        adapters.append(
            ChainlinkSource(sources.chainlink_rpc_urls, timeout=sources.request_timeout)
        )
    if "pyth" in sources.enabled:
        adapters.append(PythSource(sources.pyth_endpoints, timeout=sources.request_timeout))
    if "exchanges" in sources.enabled:
        adapters.extend(ExchangeSource(exchange_id) for exchange_id in sources.exchange_ids)
    return adapters


def _detector_channels(settings: AppSettings) -> list[NotificationChannel]:
    channels = []
    for name in settings.notifications.detector_channels:
        channels.append(NotificationChannel(type=ChannelType(name)))
    return channels


async def _build_components(settings: AppSettings) -> dict:
    """Build and wire every component in dependency order.

    Args:
        settings: Application settings.

    Returns:
        Dict of component name to instance.
    """
    logger = get_logger("oracle_watch.main")

    # 2. Storage
    database = Database(settings.storage.db_path)
    await database.connect()
    monitor_store = MonitorStore(database)
    alert_store = SqliteAlertStore(database)

    # 3. Sources and cache
    adapters = _build_adapters(settings)
    cache: ObservationCache[PriceObservation] = ObservationCache(ttl_ms=settings.cache.ttl_ms)

    # 4. Collector and reference price
    collector = ObservationCollector(adapters, cache, store=monitor_store)
    reference_cache: ObservationCache[Decimal] = ObservationCache(ttl_ms=settings.cache.ttl_ms)
    reference = ReferencePriceService(
        ExchangeSource(settings.consensus.reference_exchange), reference_cache
    )

    # 5. Consensus
    consensus = ConsensusEngine(outlier_threshold=settings.consensus.outlier_threshold)

    # 6. Notifications and rules
    dispatcher = NotificationDispatcher(settings.notifications)
    rule_engine = RuleEngine(alert_store, dispatcher=dispatcher, settings=settings.alerts)
    if settings.alerts.seed_default_rules:
        await rule_engine.seed_rules(
            default_rules(settings.notifications.default_webhook_url or None)
        )

    # 7. Health
    health_checker = HealthChecker(monitor_store, settings=settings.health)
    anomaly_detector = AnomalyDetector(
        health_checker,
        monitor_store,
        dispatcher=dispatcher,
        channels=_detector_channels(settings),
    )

    # 8. Monitor
    price_monitor = PriceMonitor(
        symbols=settings.monitor.symbols,
        collector=collector,
        consensus=consensus,
        rule_engine=rule_engine,
        reference=reference,
        poll_interval_ms=settings.monitor.poll_interval_ms,
    )

    logger.info(
        "components_built",
        sources=collector.sources,
        reference=reference.source_name,
        symbols=settings.monitor.symbols,
    )

    return {
        "database": database,
        "monitor_store": monitor_store,
        "collector": collector,
        "reference": reference,
        "dispatcher": dispatcher,
        "rule_engine": rule_engine,
        "health_checker": health_checker,
        "anomaly_detector": anomaly_detector,
        "price_monitor": price_monitor,
    }


async def _start(components: dict) -> None:
    await components["price_monitor"].start()
    components["anomaly_detector"].start()


async def _shutdown(components: dict) -> None:
    """Stop loops, flush pending notifications and release connections."""
    logger = get_logger("oracle_watch.main")

    await components["price_monitor"].stop()
    await components["anomaly_detector"].stop()
    await components["rule_engine"].drain()

    await components["collector"].close()
    await components["reference"].close()
    await components["dispatcher"].close()
    await components["database"].close()

    logger.info("oracle_watch_stopped")


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to request a graceful shutdown.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("oracle_watch.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the monitor and detector with the API server; stop them on shutdown."""
    logger = get_logger("oracle_watch.main")
    components = app.state.components

    app.state.rule_engine = components["rule_engine"]
    app.state.health_checker = components["health_checker"]
    app.state.anomaly_detector = components["anomaly_detector"]
    app.state.price_monitor = components["price_monitor"]
    app.state.monitor_store = components["monitor_store"]

    await _start(components)
    logger.info("lifespan_started")

    yield

    await _shutdown(components)


async def run() -> None:
    """Run the oracle monitor.

    With the API enabled (API_ENABLED=true, the default) uvicorn serves the
    control surface and the lifespan manages component startup and shutdown.
    Without it, the loops run until SIGINT or SIGTERM.
    """
    # 1. Load settings
    settings = AppSettings()
    setup_logging(settings.log_level)
    logger = get_logger("oracle_watch.main")

    # 2-8. Build all components
    components = await _build_components(settings)

    if settings.api.enabled:
        from oracle_watch.api import create_app

        app = create_app(lifespan=lifespan)
        app.state.components = components

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info("starting_without_api", symbols=settings.monitor.symbols)

        try:
            await _start(components)
            await stop_event.wait()
        finally:
            await _shutdown(components)


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
