"""Shared data models for the oracle monitor.

All prices, deviations and spreads use Decimal. Deviations are fractions
(Decimal("0.01") is 1%). Timestamps are Unix seconds as float.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class IssueCode(str, Enum):
    """Health check issue codes, in the order checks append them."""

    NO_DATA = "NO_DATA"
    STALE = "STALE"
    INSUFFICIENT_SOURCES = "INSUFFICIENT_SOURCES"
    HIGH_DEVIATION = "HIGH_DEVIATION"
    CHECK_FAILED = "CHECK_FAILED"


class DeviationLevel(str, Enum):
    """Presentation bucket for an absolute deviation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LatencyStatus(str, Enum):
    """Freshness bucket for one source's observation."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    STALE = "stale"


@dataclass
class PriceObservation:
    """One source's reading for one symbol."""

    source: str
    symbol: str
    price: Decimal
    observed_at: float  # as reported by the source
    fetched_at: float = field(default_factory=time.time)
    confidence: Decimal | None = None  # 0-1 where the source reports one

    @property
    def latency_ms(self) -> int:
        """Milliseconds between the source's timestamp and local retrieval, never negative."""
        return max(0, int((self.fetched_at - self.observed_at) * 1000))


@dataclass
class ConsensusResult:
    """Consensus price and per-source metrics for one symbol at one instant.

    Deviation fields are None when no valid observations were available.
    """

    symbol: str
    source_count: int
    consensus_price: Decimal | None = None
    per_source_deviation: dict[str, Decimal] = field(default_factory=dict)
    max_deviation: Decimal | None = None
    spread_absolute: Decimal | None = None
    spread_percent: Decimal | None = None
    deviation_level: DeviationLevel | None = None
    outlier_sources: list[str] = field(default_factory=list)
    latency_status: dict[str, LatencyStatus] = field(default_factory=dict)
    latest_observed_at: float | None = None
    reference_price: Decimal | None = None
    reference_deviation: Decimal | None = None
    computed_at: float = field(default_factory=time.time)

    @property
    def has_consensus(self) -> bool:
        return self.consensus_price is not None

    def to_dict(self) -> dict:
        """JSON-safe snapshot; Decimals become strings."""
        return {
            "symbol": self.symbol,
            "source_count": self.source_count,
            "consensus_price": _str_or_none(self.consensus_price),
            "per_source_deviation": {s: str(d) for s, d in self.per_source_deviation.items()},
            "max_deviation": _str_or_none(self.max_deviation),
            "spread_absolute": _str_or_none(self.spread_absolute),
            "spread_percent": _str_or_none(self.spread_percent),
            "deviation_level": self.deviation_level.value if self.deviation_level else None,
            "outlier_sources": list(self.outlier_sources),
            "latency_status": {s: st.value for s, st in self.latency_status.items()},
            "latest_observed_at": self.latest_observed_at,
            "reference_price": _str_or_none(self.reference_price),
            "reference_deviation": _str_or_none(self.reference_deviation),
            "computed_at": self.computed_at,
        }


@dataclass(frozen=True)
class HealthStatus:
    """Health of one symbol for one check cycle. Replaced, never mutated."""

    symbol: str
    issues: tuple[IssueCode, ...] = ()
    last_update: float | None = None
    age_ms: int | None = None
    price: Decimal | None = None
    deviation: Decimal | None = None
    source_count: int = 0
    error: str | None = None
    checked_at: float = field(default_factory=time.time)

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    def describe(self) -> str:
        """Human-readable summary of the issues on this status."""
        if self.is_healthy:
            return "healthy"
        parts: list[str] = []
        for issue in self.issues:
            if issue is IssueCode.NO_DATA:
                parts.append("no price data available")
            elif issue is IssueCode.STALE:
                parts.append(f"price is stale ({self.age_ms} ms old)")
            elif issue is IssueCode.INSUFFICIENT_SOURCES:
                parts.append(f"only {self.source_count} source(s) reporting")
            elif issue is IssueCode.HIGH_DEVIATION:
                parts.append(f"latest price deviates {_fmt_percent(self.deviation)} from mean")
            elif issue is IssueCode.CHECK_FAILED:
                parts.append(f"health check failed: {self.error}")
        return "; ".join(parts)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "is_healthy": self.is_healthy,
            "issues": [i.value for i in self.issues],
            "last_update": self.last_update,
            "age_ms": self.age_ms,
            "price": _str_or_none(self.price),
            "deviation": _str_or_none(self.deviation),
            "source_count": self.source_count,
            "error": self.error,
            "checked_at": self.checked_at,
        }


@dataclass
class HealthCheckResult:
    """Outcome of one health-check run across all tracked symbols."""

    statuses: list[HealthStatus]
    checked_at: float = field(default_factory=time.time)

    @property
    def total(self) -> int:
        return len(self.statuses)

    @property
    def healthy(self) -> int:
        return sum(1 for s in self.statuses if s.is_healthy)

    @property
    def stale(self) -> int:
        return sum(1 for s in self.statuses if IssueCode.STALE in s.issues)

    @property
    def deviated(self) -> int:
        return sum(1 for s in self.statuses if IssueCode.HIGH_DEVIATION in s.issues)

    @property
    def overall_healthy(self) -> bool:
        return all(s.is_healthy for s in self.statuses)

    def summary(self) -> dict:
        return {
            "total": self.total,
            "healthy": self.healthy,
            "stale": self.stale,
            "deviated": self.deviated,
            "overall_healthy": self.overall_healthy,
        }


def _str_or_none(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _fmt_percent(value: Decimal | None) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.2f}%"
