"""Market data layer -- observation cache, multi-source collection, and reference prices."""

from oracle_watch.market_data.cache import ObservationCache
from oracle_watch.market_data.collector import ObservationCollector
from oracle_watch.market_data.reference import ReferencePriceService

__all__ = ["ObservationCache", "ObservationCollector", "ReferencePriceService"]
