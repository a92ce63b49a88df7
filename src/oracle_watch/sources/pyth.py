"""Pyth Network adapter over the Hermes HTTP API.

Endpoint: {hermes}/v2/updates/price/latest?ids[]={feed_id}
Price is ``price * 10**expo``; ``conf`` shares the same exponent.
"""

from decimal import Decimal

import httpx

from oracle_watch.exceptions import SourceError
from oracle_watch.models import PriceObservation
from oracle_watch.sources.base import HttpSourceAdapter, to_decimal

# Hermes price feed ids (hex, without 0x)
PYTH_FEED_IDS: dict[str, str] = {
    "ETH/USD": "ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
    "BTC/USD": "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
    "SOL/USD": "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
}


class PythSource(HttpSourceAdapter):
    """Off-chain Pyth publisher prices via Hermes."""

    source_id = "pyth"

    def __init__(
        self,
        endpoints: list[str],
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        feed_ids: dict[str, str] | None = None,
    ) -> None:
        super().__init__(endpoints, client=client, timeout=timeout)
        self._feed_ids = dict(feed_ids or PYTH_FEED_IDS)

    def supports(self, symbol: str) -> bool:
        return symbol in self._feed_ids

    async def _fetch_from(self, endpoint: str, symbol: str) -> PriceObservation | None:
        feed_id = self._feed_ids[symbol]
        response = await self._get(
            f"{endpoint.rstrip('/')}/v2/updates/price/latest",
            params=[("ids[]", feed_id)],
        )
        try:
            parsed = response.json()["parsed"]
        except (ValueError, KeyError, TypeError) as e:
            raise SourceError(f"malformed Hermes response: {e}") from e

        entry = next(
            (p for p in parsed if str(p.get("id", "")).removeprefix("0x") == feed_id),
            None,
        )
        if entry is None:
            return None

        price_data = entry.get("price") or {}
        try:
            expo = int(price_data["expo"])
            publish_time = float(price_data["publish_time"])
        except (KeyError, TypeError, ValueError) as e:
            raise SourceError(f"malformed Hermes price entry: {e}") from e

        scale = Decimal(10) ** expo
        price = to_decimal(price_data.get("price")) * scale
        conf = to_decimal(price_data.get("conf", 0)) * scale

        confidence = None
        if price > 0:
            confidence = max(Decimal("0"), Decimal("1") - conf / price)

        return PriceObservation(
            source=self.name,
            symbol=symbol,
            price=price,
            observed_at=publish_time,
            confidence=confidence,
        )
