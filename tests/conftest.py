"""Shared test fixtures for the oracle monitor."""

from collections.abc import Callable
from decimal import Decimal

import pytest
import pytest_asyncio

from oracle_watch.data.database import Database
from oracle_watch.data.store import MonitorStore
from oracle_watch.models import PriceObservation

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced Unix-seconds clock."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_observation(clock: FakeClock) -> Callable[..., PriceObservation]:
    """Factory for observations stamped relative to the fake clock."""

    def _make(
        source: str = "chainlink",
        symbol: str = "ETH/USD",
        price: str | Decimal = "3500",
        age: float = 0.0,
    ) -> PriceObservation:
        observed_at = clock() - age
        return PriceObservation(
            source=source,
            symbol=symbol,
            price=Decimal(str(price)),
            observed_at=observed_at,
            fetched_at=clock(),
        )

    return _make


@pytest_asyncio.fixture
async def database():
    """In-memory SQLite database with the full schema."""
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def monitor_store(database: Database) -> MonitorStore:
    return MonitorStore(database)
