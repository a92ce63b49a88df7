"""Centralized exchange adapter via ccxt async.

Each instance wraps one ccxt exchange and reports under that exchange's id.
The same class backs the external reference price.
"""

import time

import ccxt.async_support as ccxt_async

from oracle_watch.exceptions import SourceError
from oracle_watch.models import PriceObservation
from oracle_watch.sources.base import SourceAdapter, to_decimal

# Exchanges without USD books quote majors against USDT
USDT_QUOTED_EXCHANGES = frozenset({"binance", "bybit", "okx", "kucoin"})


def to_exchange_symbol(symbol: str, exchange_id: str) -> str:
    """Map a monitor symbol (e.g. "ETH/USD") onto the exchange's market symbol."""
    base, _, quote = symbol.partition("/")
    quote = quote or "USD"
    if quote == "USD" and exchange_id in USDT_QUOTED_EXCHANGES:
        quote = "USDT"
    return f"{base}/{quote}"


class ExchangeSource(SourceAdapter):
    """Last-trade prices from one ccxt exchange."""

    def __init__(self, exchange_id: str, exchange: ccxt_async.Exchange | None = None) -> None:
        self._exchange_id = exchange_id
        if exchange is None:
            exchange_cls = getattr(ccxt_async, exchange_id, None)
            if exchange_cls is None:
                raise ValueError(f"Unknown ccxt exchange '{exchange_id}'")
            exchange = exchange_cls({"enableRateLimit": True})
        self._exchange = exchange

    @property
    def name(self) -> str:
        return self._exchange_id

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def _fetch_symbol(self, symbol: str) -> PriceObservation | None:
        market_symbol = to_exchange_symbol(symbol, self._exchange_id)
        try:
            ticker = await self._exchange.fetch_ticker(market_symbol)
        except ccxt_async.BaseError as e:
            raise SourceError(f"{self._exchange_id} {market_symbol}: {e}") from e

        last = ticker.get("last")
        if last is None:
            return None

        fetched_at = time.time()
        ts_ms = ticker.get("timestamp")
        observed_at = ts_ms / 1000 if ts_ms else fetched_at

        return PriceObservation(
            source=self.name,
            symbol=symbol,
            price=to_decimal(last),
            observed_at=min(observed_at, fetched_at),
            fetched_at=fetched_at,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources."""
        await self._exchange.close()
