"""
Shared test fixtures for Token Aggregator tests.

Provides reusable fixtures for:
- Token record factories
- A deterministic clock for the rate limiter
- A recording push emitter
"""

import asyncio
from typing import Any, Dict, List, Set, Tuple

import pytest

from token_aggregator.api.schemas import EventKind, MergedTokenRecord, TokenRecord
from token_aggregator.services.rate_limiter import RateLimiter


# ---------------------------------------------------------------------------
# Token factories
# ---------------------------------------------------------------------------


def make_token(address="addr1", price=1.0, liquidity=100.0, volume=500.0, market_cap=1000.0,
               tx_count=100, change=0.0, source="dexscreener", protocol="raydium",
               record_cls=TokenRecord, **overrides):
    """Create a TokenRecord for testing."""
    fields = dict(
        token_address=address,
        token_name=f"Token {address}",
        token_ticker=address.upper()[:4],
        price_sol=price,
        market_cap_sol=market_cap,
        volume_sol=volume,
        liquidity_sol=liquidity,
        transaction_count=tx_count,
        price_1hr_change=change,
        protocol=protocol,
        sources=[source],
        last_updated=1_700_000_000_000,
    )
    fields.update(overrides)
    return record_cls(**fields)


def make_merged(address="addr1", **kwargs):
    """Create a MergedTokenRecord for testing."""
    return make_token(address, record_cls=MergedTokenRecord, **kwargs)


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def merged_factory():
    return make_merged


# ---------------------------------------------------------------------------
# Rate limiter with a fake clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock whose sleep advances time instantly and records the wait."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(fake_clock):
    return RateLimiter(clock=fake_clock, sleep=fake_clock.sleep)


# ---------------------------------------------------------------------------
# Push emitter
# ---------------------------------------------------------------------------


class RecordingEmitter:
    """Emitter that records deliveries; connections in `blocked` never complete a send."""

    def __init__(self):
        self.sent: List[Tuple[str, EventKind, Dict[str, Any]]] = []
        self.blocked: Set[str] = set()
        self.failing: Set[str] = set()
        self._never = asyncio.Event()

    async def emit(self, connection_id: str, event_kind: EventKind, payload: Dict[str, Any]) -> None:
        if connection_id in self.failing:
            raise ConnectionError("socket closed")
        if connection_id in self.blocked:
            await self._never.wait()
        self.sent.append((connection_id, event_kind, payload))

    def kinds_for(self, connection_id: str) -> List[EventKind]:
        return [kind for cid, kind, _ in self.sent if cid == connection_id]


@pytest.fixture
def emitter():
    return RecordingEmitter()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll predicate until it holds or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
