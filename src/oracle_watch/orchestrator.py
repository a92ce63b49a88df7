"""Price monitor -- drives the collect, consensus and rule-evaluation cycle.

Each cycle:
  1. COLLECT: current observations from every source (cache-first)
  2. REFERENCE: external reference price per symbol
  3. CONSENSUS: median price and per-source deviation per symbol
  4. EVALUATE: alert rules against each symbol's consensus

All symbols in a cycle are evaluated against the same collection snapshot.
Cycles run under a lock, so an on-demand cycle never overlaps the loop.
"""

import asyncio
import time
import uuid
from decimal import Decimal

from oracle_watch.alerts.engine import RuleEngine
from oracle_watch.consensus.engine import ConsensusEngine
from oracle_watch.logging import bind_cycle, clear_cycle, get_logger
from oracle_watch.market_data.collector import ObservationCollector
from oracle_watch.market_data.reference import ReferencePriceService
from oracle_watch.models import ConsensusResult

logger = get_logger(__name__)


class PriceMonitor:
    """Periodic consensus and alerting loop.

    Args:
        symbols: Tracked symbols, e.g. ["ETH/USD", "BTC/USD"].
        collector: Multi-source observation collector.
        consensus: Consensus engine.
        rule_engine: Alert rule engine.
        reference: Optional reference price service for cross-checks.
        poll_interval_ms: Delay between cycles.
    """

    def __init__(
        self,
        symbols: list[str],
        collector: ObservationCollector,
        consensus: ConsensusEngine,
        rule_engine: RuleEngine,
        reference: ReferencePriceService | None = None,
        poll_interval_ms: int = 30_000,
    ) -> None:
        self._symbols = list(symbols)
        self._collector = collector
        self._consensus = consensus
        self._rule_engine = rule_engine
        self._reference = reference
        self._poll_interval = poll_interval_ms / 1000
        self._latest: dict[str, ConsensusResult] = {}
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._last_cycle_at: float | None = None
        self._cycle_count = 0

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    def get_consensus(self, symbol: str) -> ConsensusResult | None:
        """Latest consensus computed for ``symbol``."""
        return self._latest.get(symbol)

    def get_all_consensus(self) -> list[ConsensusResult]:
        return [self._latest[s] for s in self._symbols if s in self._latest]

    async def run_cycle(self) -> list[ConsensusResult]:
        """Run one collect, consensus and evaluate pass over every tracked symbol."""
        async with self._cycle_lock:
            bind_cycle(uuid.uuid4().hex[:8])
            try:
                return await self._cycle()
            finally:
                clear_cycle()

    async def _cycle(self) -> list[ConsensusResult]:
        observations = await self._collector.collect(self._symbols)
        failures = self._collector.consecutive_failures
        references = await self._reference_prices()

        results = [
            self._consensus.compute(symbol, observations.get(symbol, []), references.get(symbol))
            for symbol in self._symbols
        ]
        for result in results:
            self._latest[result.symbol] = result

        evaluations = await asyncio.gather(
            *(self._rule_engine.evaluate(r, failures) for r in results),
            return_exceptions=True,
        )
        alerts_created = 0
        for result, outcome in zip(results, evaluations):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("rule_evaluation_failed", symbol=result.symbol, error=str(outcome))
                continue
            alerts_created += len(outcome)

        self._last_cycle_at = time.time()
        self._cycle_count += 1
        logger.info(
            "monitor_cycle_complete",
            symbols=len(results),
            with_consensus=sum(1 for r in results if r.has_consensus),
            alerts_created=alerts_created,
            failing_sources=sorted(s for s, n in failures.items() if n),
        )
        return results

    async def _reference_prices(self) -> dict[str, Decimal | None]:
        if self._reference is None:
            return {}
        prices = await asyncio.gather(*(self._reference.get_price(s) for s in self._symbols))
        return dict(zip(self._symbols, prices))

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Begin cycling in the background."""
        if self._task is not None and not self._task.done():
            logger.warning("price_monitor_already_running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "price_monitor_started",
            symbols=self._symbols,
            poll_interval=self._poll_interval,
        )

    async def stop(self) -> None:
        """Stop after the in-flight cycle, if any, completes."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("price_monitor_stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("price_monitor_cycle_error", error=str(e), exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    def get_status(self) -> dict:
        return {
            "running": self._task is not None and not self._task.done(),
            "symbols": self._symbols,
            "cycles": self._cycle_count,
            "last_cycle_at": self._last_cycle_at,
            "source_failures": self._collector.consecutive_failures,
        }
