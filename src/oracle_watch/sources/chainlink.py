"""Chainlink data feed adapter over Ethereum JSON-RPC.

Calls ``latestRoundData()`` on each aggregator proxy with ``eth_call`` and
decodes the ABI-encoded tuple
``(roundId, answer, startedAt, updatedAt, answeredInRound)``.
"""

from decimal import Decimal

import httpx

from oracle_watch.exceptions import SourceError
from oracle_watch.models import PriceObservation
from oracle_watch.sources.base import HttpSourceAdapter

LATEST_ROUND_DATA_SELECTOR = "0xfeaf968c"
USD_FEED_DECIMALS = 8

# Ethereum mainnet aggregator proxies
CHAINLINK_FEEDS: dict[str, str] = {
    "ETH/USD": "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419",
    "BTC/USD": "0xF4030086522a5bEEa4988F8cA5B36dbC97BeE88c",
    "LINK/USD": "0x2c1d072e956AFFC0D435Cb7AC38EF18d24d9127c",
    "DAI/USD": "0xAed0c38402a5d19df6E4c03F4E2DceD6e29c1ee9",
    "USDC/USD": "0x8fFfFfd4AfB6115b954Bd326cbe7B4BA576818f6",
    "USDT/USD": "0x3E7d1eAB13ad0104d2750B8863b489D65364e32D",
    "AAVE/USD": "0x547a514d5e3769680Ce22B2361c10Ea13619e8a9",
    "UNI/USD": "0x553303d460EE0afB37EdFf9bE42922D8FF63220e",
}


def decode_latest_round_data(result: str) -> tuple[int, int]:
    """Decode an eth_call result into ``(answer, updated_at)``.

    ``answer`` is a signed int256; ``updated_at`` is Unix seconds.
    """
    data = result.removeprefix("0x")
    if len(data) < 64 * 5:
        raise SourceError(f"short latestRoundData result ({len(data)} hex chars)")
    words = [data[i * 64:(i + 1) * 64] for i in range(5)]
    answer = int(words[1], 16)
    if answer >= 2**255:
        answer -= 2**256
    updated_at = int(words[3], 16)
    return answer, updated_at


class ChainlinkSource(HttpSourceAdapter):
    """On-chain Chainlink aggregator prices."""

    source_id = "chainlink"

    def __init__(
        self,
        endpoints: list[str],
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        feeds: dict[str, str] | None = None,
        decimals: int = USD_FEED_DECIMALS,
    ) -> None:
        super().__init__(endpoints, client=client, timeout=timeout)
        self._feeds = dict(feeds or CHAINLINK_FEEDS)
        self._decimals = decimals
        self._request_id = 0

    def supports(self, symbol: str) -> bool:
        return symbol in self._feeds

    async def _fetch_from(self, endpoint: str, symbol: str) -> PriceObservation | None:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_call",
            "params": [
                {"to": self._feeds[symbol], "data": LATEST_ROUND_DATA_SELECTOR},
                "latest",
            ],
        }
        response = await self._post(endpoint, json=payload)
        try:
            body = response.json()
        except ValueError as e:
            raise SourceError(f"malformed JSON-RPC response: {e}") from e

        if body.get("error"):
            raise SourceError(f"JSON-RPC error: {body['error']}")
        result = body.get("result")
        if not isinstance(result, str):
            raise SourceError("JSON-RPC response has no result")

        try:
            answer, updated_at = decode_latest_round_data(result)
        except ValueError as e:
            raise SourceError(f"undecodable latestRoundData: {e}") from e

        return PriceObservation(
            source=self.name,
            symbol=symbol,
            price=Decimal(answer).scaleb(-self._decimals),
            observed_at=float(updated_at),
        )
