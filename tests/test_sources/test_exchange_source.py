"""Tests for the ccxt-backed exchange adapter.

The ccxt exchange is replaced by a MagicMock with AsyncMock methods.
"""

import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt_async
import pytest

from oracle_watch.sources.exchange import ExchangeSource, to_exchange_symbol


def _mock_exchange(ticker: dict | None = None, error: Exception | None = None) -> MagicMock:
    exchange = MagicMock()
    exchange.fetch_ticker = AsyncMock(return_value=ticker, side_effect=error)
    exchange.close = AsyncMock()
    return exchange


class TestToExchangeSymbol:
    def test_usd_kept_on_usd_venues(self) -> None:
        assert to_exchange_symbol("ETH/USD", "coinbase") == "ETH/USD"
        assert to_exchange_symbol("BTC/USD", "kraken") == "BTC/USD"

    def test_usd_mapped_to_usdt_on_usdt_venues(self) -> None:
        assert to_exchange_symbol("ETH/USD", "binance") == "ETH/USDT"
        assert to_exchange_symbol("SOL/USD", "okx") == "SOL/USDT"

    def test_non_usd_quote_untouched(self) -> None:
        assert to_exchange_symbol("ETH/BTC", "binance") == "ETH/BTC"


class TestExchangeSource:
    @pytest.mark.asyncio
    async def test_fetch_uses_last_and_exchange_timestamp(self) -> None:
        exchange = _mock_exchange({"last": 3500.5, "timestamp": 1_700_000_000_000})
        source = ExchangeSource("binance", exchange=exchange)

        observations = await source.fetch_prices(["ETH/USD"])

        exchange.fetch_ticker.assert_awaited_once_with("ETH/USDT")
        assert len(observations) == 1
        obs = observations[0]
        assert obs.source == "binance"
        assert obs.symbol == "ETH/USD"
        assert obs.price == Decimal("3500.5")
        assert obs.observed_at == 1_700_000_000.0

    @pytest.mark.asyncio
    async def test_future_timestamp_capped_at_fetch_time(self) -> None:
        future_ms = (time.time() + 3600) * 1000
        exchange = _mock_exchange({"last": 100, "timestamp": future_ms})
        source = ExchangeSource("coinbase", exchange=exchange)

        obs = (await source.fetch_prices(["LINK/USD"]))[0]

        assert obs.observed_at <= obs.fetched_at
        assert obs.latency_ms == 0

    @pytest.mark.asyncio
    async def test_missing_timestamp_uses_fetch_time(self) -> None:
        exchange = _mock_exchange({"last": 100, "timestamp": None})
        source = ExchangeSource("kraken", exchange=exchange)

        obs = (await source.fetch_prices(["LINK/USD"]))[0]
        assert obs.observed_at == obs.fetched_at

    @pytest.mark.asyncio
    async def test_ccxt_error_omits_symbol(self) -> None:
        exchange = _mock_exchange(error=ccxt_async.NetworkError("connection reset"))
        source = ExchangeSource("kraken", exchange=exchange)

        assert await source.fetch_prices(["ETH/USD"]) == []

    @pytest.mark.asyncio
    async def test_ticker_without_last_is_omitted(self) -> None:
        exchange = _mock_exchange({"last": None, "timestamp": 1_700_000_000_000})
        source = ExchangeSource("kraken", exchange=exchange)

        assert await source.fetch_prices(["ETH/USD"]) == []

    @pytest.mark.asyncio
    async def test_close_closes_exchange(self) -> None:
        exchange = _mock_exchange({"last": 1})
        source = ExchangeSource("kraken", exchange=exchange)

        await source.close()
        exchange.close.assert_awaited_once()

    def test_unknown_exchange_id_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown ccxt exchange"):
            ExchangeSource("not-a-real-exchange")
