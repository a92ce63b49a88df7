"""Per-symbol price health checks.

Checks run in a fixed order, each appending an issue code on failure:
  1. NO_DATA               no observations in the lookback window (short-circuits)
  2. STALE                 newest observation older than max_price_age_ms
  3. INSUFFICIENT_SOURCES  fewer than min_data_points distinct sources
  4. HIGH_DEVIATION        newest price deviates from the window mean by more
                           than max_deviation

``check_symbol`` never raises: a storage failure yields a CHECK_FAILED
status so one broken symbol cannot abort a run.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from oracle_watch.config import HealthSettings
from oracle_watch.data.store import MonitorStore
from oracle_watch.logging import get_logger
from oracle_watch.models import HealthCheckResult, HealthStatus, IssueCode

logger = get_logger(__name__)


class HealthChecker:
    """Evaluates freshness, source coverage and deviation from stored observations.

    Args:
        store: Observation store queried for each check.
        settings: Thresholds; replaceable at runtime via ``update_config``.
        clock: Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        store: MonitorStore,
        settings: HealthSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings or HealthSettings()
        self._clock = clock
        self._last_result: HealthCheckResult | None = None

    @property
    def config(self) -> HealthSettings:
        """Current thresholds (a copy; use ``update_config`` to change them)."""
        return self._settings.model_copy()

    def update_config(self, **changes: Any) -> HealthSettings:
        """Replace selected thresholds. Raises ValueError on unknown or invalid fields."""
        unknown = set(changes) - set(HealthSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown health settings: {', '.join(sorted(unknown))}")
        self._settings = HealthSettings.model_validate({**self._settings.model_dump(), **changes})
        logger.info("health_config_updated", fields=sorted(changes))
        return self.config

    @property
    def last_result(self) -> HealthCheckResult | None:
        return self._last_result

    async def check_symbol(self, symbol: str) -> HealthStatus:
        s = self._settings
        now = self._clock()
        since = now - s.lookback_ms / 1000

        try:
            observations = await self._store.get_recent_observations(symbol, since, s.max_rows)
            if not observations:
                return HealthStatus(symbol=symbol, issues=(IssueCode.NO_DATA,), checked_at=now)
            source_count = await self._store.count_distinct_sources(symbol, since)
        except Exception as e:
            logger.error("health_check_failed", symbol=symbol, error=str(e), exc_info=True)
            return HealthStatus(
                symbol=symbol,
                issues=(IssueCode.CHECK_FAILED,),
                error=str(e),
                checked_at=now,
            )

        latest = observations[0]
        age_ms = max(0, int((now - latest.observed_at) * 1000))
        prices = [o.price for o in observations]
        mean = sum(prices, Decimal("0")) / len(prices)
        deviation = abs(latest.price - mean) / mean if mean > 0 else Decimal("0")

        issues: list[IssueCode] = []
        if age_ms > s.max_price_age_ms:
            issues.append(IssueCode.STALE)
        if source_count < s.min_data_points:
            issues.append(IssueCode.INSUFFICIENT_SOURCES)
        if deviation > s.max_deviation:
            issues.append(IssueCode.HIGH_DEVIATION)

        return HealthStatus(
            symbol=symbol,
            issues=tuple(issues),
            last_update=latest.observed_at,
            age_ms=age_ms,
            price=latest.price,
            deviation=deviation,
            source_count=source_count,
            checked_at=now,
        )

    async def run_health_check(self, symbols: list[str] | None = None) -> HealthCheckResult:
        """Check ``symbols`` (or every symbol seen in the discovery window) concurrently.

        Failure to enumerate symbols propagates to the caller.
        """
        now = self._clock()
        if symbols is None:
            symbols = await self._store.list_active_symbols(
                now - self._settings.discovery_window_ms / 1000
            )

        statuses = await asyncio.gather(*(self.check_symbol(s) for s in symbols))
        result = HealthCheckResult(statuses=list(statuses), checked_at=now)
        self._last_result = result

        logger.info("health_check_complete", **result.summary())
        return result
