"""Shared fixtures for signal resolution tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
from datetime import timedelta
from typing import Optional

from models.signals import (
    CreateSignalInput,
    CreateStrategistInput,
    CreateStrategyInput,
    Direction,
    MarketKind,
)
from services.errors import PriceProviderError
from services.price_oracle import PriceOracle
from services.resolution_engine import ResolutionEngine
from services.signal_service import SignalService
from services.stats_aggregator import StatsAggregator
from services.stores import InMemorySignalStore
from utils.utcnow import utcnow

OWNER_WALLET = "0xa11ce00000000000000000000000000000000001"
FOLLOWER_WALLET = "0xb0b0000000000000000000000000000000000002"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class StaticPriceProvider:
    """Price provider answering from a mutable dict of cents."""

    def __init__(self, name: str = "static", prices: Optional[dict] = None, error: Optional[Exception] = None):
        self.name = name
        self.prices = dict(prices or {})
        self.error = error
        self.calls: list[list[str]] = []
        self.closed = False

    async def fetch_spot_prices(self, symbols):
        self.calls.append(list(symbols))
        if self.error is not None:
            raise self.error
        missing = [s for s in symbols if s not in self.prices]
        if missing:
            raise PriceProviderError(self.name, f"no quote for {missing}")
        return {s: self.prices[s] for s in symbols}

    async def close(self):
        self.closed = True


class RecordingNotifier:
    def __init__(self, error: Optional[Exception] = None):
        self.events = []
        self.error = error

    async def notify_resolution(self, event):
        self.events.append(event)
        if self.error is not None:
            raise self.error


class FakeClock:
    """Monotonic clock the oracle cache can be driven with."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store():
    return InMemorySignalStore()


@pytest.fixture
def price_provider():
    return StaticPriceProvider(prices={"BTC": 6_500_000, "ETH": 350_000})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle(price_provider, clock):
    return PriceOracle([price_provider], cache_ttl_seconds=10.0, fallback_cents={"BTC": 0, "ETH": 0}, clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def aggregator(memory_store):
    return StatsAggregator(memory_store)


@pytest.fixture
def engine(memory_store, oracle, aggregator, notifier):
    return ResolutionEngine(memory_store, oracle, aggregator=aggregator, notifier=notifier, interval_seconds=0.05)


@pytest.fixture
def service(memory_store, oracle, engine, aggregator):
    return SignalService(memory_store, oracle, engine, aggregator=aggregator)


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_strategy():
    """Register the owner (once) and create a strategy in ``store``."""

    async def _make(
        store,
        market_kind: MarketKind = MarketKind.CRYPTO,
        base_market: str = "BTC-USD",
        name: str = "BTC Momentum",
        wallet: str = OWNER_WALLET,
        display_name: Optional[str] = "Alice",
        is_public: bool = True,
    ):
        if display_name and await store.get_strategist(wallet) is None:
            await store.create_strategist(CreateStrategistInput(wallet_address=wallet, display_name=display_name))
        return await store.create_strategy(
            CreateStrategyInput(
                wallet_address=wallet,
                name=name,
                market_kind=market_kind,
                base_market=base_market,
                is_public=is_public,
            )
        )

    return _make


@pytest.fixture
def make_signal():
    """Create a signal that expired ``expired_for`` seconds ago (negative: still live)."""

    async def _make(
        store,
        strategy_id: int,
        direction: Direction = Direction.UP,
        entry_value: Optional[int] = 10_000,
        expired_for: float = 60.0,
        asset: Optional[str] = None,
        confidence_bps: int = 7_500,
    ):
        return await store.create_signal(
            CreateSignalInput(
                strategy_id=strategy_id,
                direction=direction,
                entry_value=entry_value,
                confidence_bps=confidence_bps,
                expires_at=utcnow() - timedelta(seconds=expired_for),
                asset=asset,
            )
        )

    return _make
