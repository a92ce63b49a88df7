"""External reference price used to cross-check the oracle consensus."""

from decimal import Decimal

from oracle_watch.logging import get_logger
from oracle_watch.market_data.cache import ObservationCache
from oracle_watch.sources.base import SourceAdapter

logger = get_logger(__name__)

_CACHE_SOURCE = "reference"


class ReferencePriceService:
    """``get_price(symbol) -> Decimal | None`` over a market-data source.

    Results are cached with the same TTL discipline as the source adapters.
    Lookups never raise; an unavailable price is None.
    """

    def __init__(self, source: SourceAdapter, cache: ObservationCache[Decimal]) -> None:
        self._source = source
        self._cache = cache

    @property
    def source_name(self) -> str:
        return self._source.name

    async def get_price(self, symbol: str) -> Decimal | None:
        cached = self._cache.get(_CACHE_SOURCE, symbol)
        if cached is not None:
            return cached

        observations = await self._source.fetch_prices([symbol])
        if not observations:
            logger.warning("reference_price_unavailable", symbol=symbol, source=self.source_name)
            return None

        price = observations[0].price
        self._cache.set(_CACHE_SOURCE, symbol, price)
        return price

    async def close(self) -> None:
        await self._source.close()
