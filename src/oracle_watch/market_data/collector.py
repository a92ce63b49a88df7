"""Fan-out observation collection across all configured source adapters.

Cache-first: a (source, symbol) pair with a fresh cache entry is not
re-fetched. Fresh upstream observations are cached and persisted. Each
source carries a consecutive-failure counter that feeds protocol-down rules.
"""

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from oracle_watch.exceptions import StorageError
from oracle_watch.logging import get_logger
from oracle_watch.market_data.cache import ObservationCache
from oracle_watch.models import PriceObservation
from oracle_watch.sources.base import SourceAdapter

if TYPE_CHECKING:
    from oracle_watch.data.store import MonitorStore

logger = get_logger(__name__)


class ObservationCollector:
    """Collects the current observations for a set of symbols from every adapter."""

    def __init__(
        self,
        adapters: list[SourceAdapter],
        cache: ObservationCache[PriceObservation],
        store: "MonitorStore | None" = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._adapters = list(adapters)
        self._cache = cache
        self._store = store
        self._clock = clock
        self._failures: dict[str, int] = {a.name: 0 for a in self._adapters}

    @property
    def sources(self) -> list[str]:
        return [a.name for a in self._adapters]

    @property
    def consecutive_failures(self) -> dict[str, int]:
        """Snapshot of consecutive failed fetch rounds per source."""
        return dict(self._failures)

    async def collect(self, symbols: list[str]) -> dict[str, list[PriceObservation]]:
        """Return valid observations grouped by symbol.

        Every requested symbol is present in the result, possibly with an
        empty list.
        """
        per_adapter = await asyncio.gather(
            *(self._collect_from(adapter, symbols) for adapter in self._adapters),
            return_exceptions=True,
        )

        grouped: dict[str, list[PriceObservation]] = {s: [] for s in symbols}
        fresh: list[PriceObservation] = []
        for adapter, result in zip(self._adapters, per_adapter):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                # fetch_prices never raises; anything here is a programming error
                logger.error(
                    "source_collect_error",
                    source=adapter.name,
                    error=str(result),
                    exc_info=result,
                )
                self._failures[adapter.name] = self._failures.get(adapter.name, 0) + 1
                continue
            cached, fetched = result
            for obs in cached + fetched:
                if obs.symbol in grouped:
                    grouped[obs.symbol].append(obs)
            fresh.extend(fetched)

        if fresh and self._store is not None:
            try:
                await self._store.insert_observations(fresh)
            except StorageError as e:
                logger.error("observation_persist_failed", count=len(fresh), error=str(e))

        logger.debug(
            "collection_complete",
            symbols=len(symbols),
            fetched=len(fresh),
            observations=sum(len(v) for v in grouped.values()),
        )
        return grouped

    async def _collect_from(
        self, adapter: SourceAdapter, symbols: list[str]
    ) -> tuple[list[PriceObservation], list[PriceObservation]]:
        """Return (cached, freshly fetched) observations for one adapter."""
        cached: list[PriceObservation] = []
        missing: list[str] = []
        for symbol in symbols:
            if not adapter.supports(symbol):
                continue
            hit = self._cache.get(adapter.name, symbol)
            if hit is not None:
                cached.append(hit)
            else:
                missing.append(symbol)

        if not missing:
            return cached, []

        fetched = await adapter.fetch_prices(missing)
        for obs in fetched:
            self._cache.set(adapter.name, obs.symbol, obs)

        if fetched:
            if self._failures.get(adapter.name):
                logger.info("source_recovered", source=adapter.name)
            self._failures[adapter.name] = 0
        else:
            count = self._failures.get(adapter.name, 0) + 1
            self._failures[adapter.name] = count
            logger.warning(
                "source_round_failed",
                source=adapter.name,
                symbols=missing,
                consecutive_failures=count,
            )
        return cached, fetched

    async def close(self) -> None:
        await asyncio.gather(*(a.close() for a in self._adapters), return_exceptions=True)
