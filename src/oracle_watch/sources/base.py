"""Source adapter interface and shared HTTP plumbing.

Every adapter turns one upstream price source into normalized
PriceObservation records. ``fetch_prices`` never raises on partial failure:
a symbol that cannot be fetched is omitted and the omission is logged with
the symbol and cause.

HTTP-backed adapters hold a prioritized list of equivalent endpoints. When
the primary endpoint fails for a symbol, the next one is tried exactly once
before the symbol is given up for this call.
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import ClassVar

import httpx

from oracle_watch.exceptions import SourceError, SourceHTTPError
from oracle_watch.logging import get_logger
from oracle_watch.models import PriceObservation

logger = get_logger(__name__)


class SourceAdapter(ABC):
    """Abstract base class for price sources.

    Subclasses set ``source_id`` and implement ``_fetch_symbol``, raising
    SourceError for any upstream problem.
    """

    source_id: ClassVar[str] = ""

    @property
    def name(self) -> str:
        """Identifier stamped on every observation from this adapter."""
        return self.source_id

    def supports(self, symbol: str) -> bool:
        """Whether this source publishes a price for the symbol."""
        return True

    async def fetch_prices(self, symbols: list[str]) -> list[PriceObservation]:
        """Fetch the current price for each supported symbol.

        Unsupported symbols are skipped silently. Failed symbols are omitted
        and logged at warning level. Observations with a non-positive price
        are discarded.
        """
        wanted = [s for s in symbols if self.supports(s)]
        if not wanted:
            return []

        results = await asyncio.gather(
            *(self._fetch_symbol(symbol) for symbol in wanted),
            return_exceptions=True,
        )

        observations: list[PriceObservation] = []
        for symbol, result in zip(wanted, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "source_fetch_failed",
                    source=self.name,
                    symbol=symbol,
                    error=str(result),
                )
                continue
            if result is None:
                logger.warning(
                    "source_fetch_failed",
                    source=self.name,
                    symbol=symbol,
                    error="no price returned",
                )
                continue
            if result.price <= 0:
                logger.warning(
                    "non_positive_price_discarded",
                    source=self.name,
                    symbol=symbol,
                    price=str(result.price),
                )
                continue
            observations.append(result)

        logger.debug(
            "source_fetch_complete",
            source=self.name,
            requested=len(wanted),
            returned=len(observations),
        )
        return observations

    @abstractmethod
    async def _fetch_symbol(self, symbol: str) -> PriceObservation | None:
        """Fetch one symbol. Raise SourceError on upstream failure."""

    async def close(self) -> None:
        """Release any resources held by the adapter."""


class HttpSourceAdapter(SourceAdapter):
    """Source adapter backed by one or more equivalent HTTP endpoints.

    The httpx client can be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise the adapter creates and owns one.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        endpoints: list[str],
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError(f"{type(self).__name__} needs at least one endpoint")
        self._endpoints = list(endpoints)
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
        )

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    async def _fetch_symbol(self, symbol: str) -> PriceObservation | None:
        primary = self._endpoints[0]
        try:
            return await self._fetch_from(primary, symbol)
        except SourceError as e:
            if len(self._endpoints) < 2:
                raise
            fallback = self._endpoints[1]
            logger.info(
                "source_endpoint_fallback",
                source=self.name,
                symbol=symbol,
                failed=primary,
                fallback=fallback,
                error=str(e),
            )
            return await self._fetch_from(fallback, symbol)

    @abstractmethod
    async def _fetch_from(self, endpoint: str, symbol: str) -> PriceObservation | None:
        """Fetch one symbol from one endpoint."""

    async def _get(self, url: str, *, params: dict | list | None = None) -> httpx.Response:
        """HTTP GET, raising SourceHTTPError on non-2xx and SourceError on transport errors."""
        try:
            response = await self._client.get(url, params=params, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise SourceError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceError(f"Request failed: {e}") from e
        if not response.is_success:
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response

    async def _post(self, url: str, *, json: dict) -> httpx.Response:
        """HTTP POST with a JSON body, same error contract as ``_get``."""
        try:
            response = await self._client.post(url, json=json, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise SourceError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceError(f"Request failed: {e}") from e
        if not response.is_success:
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()


def to_decimal(raw: object) -> Decimal:
    """Convert an upstream numeric value to Decimal, raising SourceError on garbage."""
    try:
        value = Decimal(str(raw))
    except Exception as e:
        raise SourceError(f"invalid numeric value: {raw!r}") from e
    if not value.is_finite():
        raise SourceError(f"non-finite numeric value: {raw!r}")
    return value
