"""Consensus price and per-source deviation metrics.

Core formula:
  consensus = median(prices)                 (upper-middle element for even counts)
  deviation[source] = (price - consensus) / consensus   (signed fraction)
  max_deviation = max(|deviation|)
  spread_absolute = max(price) - min(price)
  spread_percent = spread_absolute / consensus
"""

from decimal import Decimal

from oracle_watch.logging import get_logger
from oracle_watch.models import ConsensusResult, DeviationLevel, LatencyStatus, PriceObservation

logger = get_logger(__name__)

# Presentation buckets for absolute deviation. Fixed for compatibility.
_DEVIATION_LOW = Decimal("0.005")
_DEVIATION_MEDIUM = Decimal("0.01")
_DEVIATION_HIGH = Decimal("0.02")

_LATENCY_DEGRADED_MS = 30_000
_LATENCY_STALE_MS = 60_000


def classify_deviation(deviation: Decimal) -> DeviationLevel:
    """Bucket an absolute deviation: <0.5% low, <1% medium, <2% high, else critical."""
    d = abs(deviation)
    if d < _DEVIATION_LOW:
        return DeviationLevel.LOW
    if d < _DEVIATION_MEDIUM:
        return DeviationLevel.MEDIUM
    if d < _DEVIATION_HIGH:
        return DeviationLevel.HIGH
    return DeviationLevel.CRITICAL


def classify_latency(latency_ms: int) -> LatencyStatus:
    """Bucket a source latency: >60s stale, >30s degraded, else healthy."""
    if latency_ms > _LATENCY_STALE_MS:
        return LatencyStatus.STALE
    if latency_ms > _LATENCY_DEGRADED_MS:
        return LatencyStatus.DEGRADED
    return LatencyStatus.HEALTHY


def median(values: list[Decimal]) -> Decimal:
    """Median of a non-empty list; the upper-middle element for even counts."""
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


class ConsensusEngine:
    """Computes a ConsensusResult from one window of observations for one symbol.

    Args:
        outlier_threshold: Absolute deviation above which a source is listed
            as an outlier (default 1%).
    """

    def __init__(self, outlier_threshold: Decimal = Decimal("0.01")) -> None:
        self._outlier_threshold = outlier_threshold

    @property
    def outlier_threshold(self) -> Decimal:
        return self._outlier_threshold

    def compute(
        self,
        symbol: str,
        observations: list[PriceObservation],
        reference_price: Decimal | None = None,
    ) -> ConsensusResult:
        """Build the consensus for ``symbol``.

        Observations with non-positive price are discarded. When several
        observations share a source, the most recent one is used. With no
        valid observations the result carries ``source_count == 0`` and no
        price or deviation fields.
        """
        latest: dict[str, PriceObservation] = {}
        for obs in observations:
            if obs.symbol != symbol or obs.price <= 0:
                continue
            current = latest.get(obs.source)
            if current is None or obs.observed_at > current.observed_at:
                latest[obs.source] = obs

        if not latest:
            return ConsensusResult(symbol=symbol, source_count=0, reference_price=reference_price)

        valid = list(latest.values())
        prices = [o.price for o in valid]
        consensus = median(prices)

        per_source = {o.source: (o.price - consensus) / consensus for o in valid}
        max_deviation = max(abs(d) for d in per_source.values())
        spread_absolute = max(prices) - min(prices)

        reference_deviation = None
        if reference_price is not None and reference_price > 0:
            reference_deviation = (consensus - reference_price) / reference_price

        result = ConsensusResult(
            symbol=symbol,
            source_count=len(valid),
            consensus_price=consensus,
            per_source_deviation=per_source,
            max_deviation=max_deviation,
            spread_absolute=spread_absolute,
            spread_percent=spread_absolute / consensus,
            deviation_level=classify_deviation(max_deviation),
            outlier_sources=sorted(
                s for s, d in per_source.items() if abs(d) > self._outlier_threshold
            ),
            latency_status={o.source: classify_latency(o.latency_ms) for o in valid},
            latest_observed_at=max(o.observed_at for o in valid),
            reference_price=reference_price,
            reference_deviation=reference_deviation,
        )

        logger.debug(
            "consensus_computed",
            symbol=symbol,
            sources=result.source_count,
            price=str(consensus),
            max_deviation=str(max_deviation),
        )
        return result
