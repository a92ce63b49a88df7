"""Consensus layer -- median price, per-source deviation, and presentation buckets."""

from oracle_watch.consensus.engine import (
    ConsensusEngine,
    classify_deviation,
    classify_latency,
    median,
)

__all__ = ["ConsensusEngine", "classify_deviation", "classify_latency", "median"]
