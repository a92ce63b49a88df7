"""Source adapters -- normalize oracle networks and exchanges into PriceObservation records."""

from oracle_watch.sources.base import HttpSourceAdapter, SourceAdapter
from oracle_watch.sources.chainlink import ChainlinkSource
from oracle_watch.sources.exchange import ExchangeSource
from oracle_watch.sources.pyth import PythSource

__all__ = [
    "ChainlinkSource",
    "ExchangeSource",
    "HttpSourceAdapter",
    "PythSource",
    "SourceAdapter",
]
