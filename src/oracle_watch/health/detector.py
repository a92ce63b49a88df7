"""Anomaly detector -- scheduled health checks with alert persistence and dedup.

Runs once immediately on start, then every ``check_interval_ms``. Cycles
never overlap; stopping lets an in-flight cycle finish and schedules no
further ones.
"""

import asyncio
import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from oracle_watch.alerts.models import Notification, NotificationChannel
from oracle_watch.data.store import MonitorStore
from oracle_watch.exceptions import StorageError
from oracle_watch.health.checker import HealthChecker
from oracle_watch.logging import bind_cycle, clear_cycle, get_logger
from oracle_watch.models import HealthCheckResult, HealthStatus, IssueCode

if TYPE_CHECKING:
    from oracle_watch.notifications.dispatcher import NotificationDispatcher

logger = get_logger(__name__)


def alert_severity(status: HealthStatus) -> str:
    """Row severity: "high" for deviation, "medium" for every other issue."""
    return "high" if IssueCode.HIGH_DEVIATION in status.issues else "medium"


def primary_issue(status: HealthStatus) -> IssueCode:
    if IssueCode.HIGH_DEVIATION in status.issues:
        return IssueCode.HIGH_DEVIATION
    return status.issues[0]


class AnomalyDetector:
    """Periodic health-check driver.

    Args:
        checker: Health checker run every cycle.
        store: Store holding anomaly alert rows.
        dispatcher: Optional notification dispatcher for new alert rows.
        channels: Channels used for detector notifications.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        checker: HealthChecker,
        store: MonitorStore,
        dispatcher: "NotificationDispatcher | None" = None,
        channels: list[NotificationChannel] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._checker = checker
        self._store = store
        self._dispatcher = dispatcher
        self._channels = list(channels or [])
        self._clock = clock
        self._symbol_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, symbols: list[str] | None = None) -> HealthCheckResult:
        """Run one detection cycle.

        Unhealthy symbols get a new alert row unless an unresolved one was
        created within the suppression window. Healthy symbols have their
        unresolved rows resolved.
        """
        bind_cycle(uuid.uuid4().hex[:8])
        try:
            result = await self._checker.run_health_check(symbols)

            unhealthy = [s for s in result.statuses if not s.is_healthy]
            healthy = [s.symbol for s in result.statuses if s.is_healthy]

            outcomes = await asyncio.gather(
                *(self._record_unhealthy(s) for s in unhealthy),
                return_exceptions=True,
            )
            created = 0
            for status, outcome in zip(unhealthy, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(
                        "price_alert_persist_failed", symbol=status.symbol, error=str(outcome)
                    )
                elif outcome:
                    created += 1

            resolved = 0
            try:
                resolved = await self._store.resolve_price_alerts(healthy, self._clock())
            except StorageError as e:
                logger.error("price_alert_resolve_failed", symbols=healthy, error=str(e))

            logger.info(
                "anomaly_detection_complete",
                checked=result.total,
                unhealthy=len(unhealthy),
                alerts_created=created,
                alerts_resolved=resolved,
            )
            return result
        finally:
            clear_cycle()

    async def _record_unhealthy(self, status: HealthStatus) -> bool:
        """Create an alert row for ``status`` unless suppressed. Returns True if created."""
        async with self._symbol_locks[status.symbol]:
            now = self._clock()
            window = self._checker.config.suppression_window_ms / 1000
            existing = await self._store.find_recent_unresolved_alert(status.symbol, now - window)
            if existing is not None:
                logger.debug("price_alert_suppressed", symbol=status.symbol, alert_id=existing.id)
                return False

            issue = primary_issue(status)
            record = await self._store.insert_price_alert(
                symbol=status.symbol,
                issue_type=issue.value,
                severity=alert_severity(status),
                details=status.to_dict(),
                created_at=now,
            )

        logger.warning(
            "price_alert_created",
            alert_id=record.id,
            symbol=status.symbol,
            issue=issue.value,
            severity=record.severity,
        )

        if self._dispatcher is not None and self._channels:
            is_deviation = issue is IssueCode.HIGH_DEVIATION
            self._dispatcher.submit(
                self._channels,
                Notification(
                    alert_id=f"price-alert-{record.id}",
                    title=f"[{'CRITICAL' if is_deviation else 'WARNING'}] "
                    f"{status.symbol} price health check failed",
                    message=status.describe(),
                    severity="critical" if is_deviation else "warning",
                    symbol=status.symbol,
                    context=status.to_dict(),
                    created_at=now,
                ),
            )
        return True

    # ──────────────────────────────────────────────
    # Scheduling
    # ──────────────────────────────────────────────

    def start(self, symbols: list[str] | None = None) -> Callable[[], Awaitable[None]]:
        """Start the periodic loop and return its stop handle."""
        if self.is_running:
            logger.warning("anomaly_detector_already_running")
            return self.stop
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(symbols))
        logger.info(
            "anomaly_detector_started",
            interval_ms=self._checker.config.check_interval_ms,
        )
        return self.stop

    async def stop(self) -> None:
        """Stop scheduling cycles and wait for an in-flight cycle to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("anomaly_detector_stopped")

    async def _run_loop(self, symbols: list[str] | None) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once(symbols)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("anomaly_detection_failed", exc_info=True)
            interval = self._checker.config.check_interval_ms / 1000
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
