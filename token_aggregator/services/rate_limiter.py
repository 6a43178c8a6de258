"""
Per-source adaptive rate limiter.

Each upstream source gets its own pacing state: a minimum delay between
consecutive calls that doubles whenever the provider signals throttling and
snaps back to the base value after a successful call. This only paces calls
made from this process; it is not a distributed limiter.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

from ..core.logging_config import create_logger

logger = create_logger(__name__)

BASE_DELAY_MS = 250.0
MAX_DELAY_MS = 8000.0


@dataclass
class RateState:
    """Pacing state for one source."""
    delay_ms: float = BASE_DELAY_MS
    last_call: float = float("-inf")  # clock seconds
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class RateLimiter:
    """Adaptive delay gate keyed by source name."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._states: Dict[str, RateState] = {}

    def _state(self, source: str) -> RateState:
        state = self._states.get(source)
        if state is None:
            state = self._states[source] = RateState()
        return state

    async def throttle(self, source: str) -> None:
        """Wait until the current delay has elapsed since the last call, then record this call."""
        state = self._state(source)
        async with state.lock:
            elapsed_ms = (self._clock() - state.last_call) * 1000
            if elapsed_ms < state.delay_ms:
                wait_ms = state.delay_ms - elapsed_ms
                logger.debug("Throttling source", extra={
                    "source": source,
                    "wait_ms": round(wait_ms, 1)
                })
                await self._sleep(wait_ms / 1000)
            state.last_call = self._clock()

    def on_rate_limited(self, source: str) -> float:
        """Double the source delay up to the ceiling and return the new delay."""
        state = self._state(source)
        state.delay_ms = min(state.delay_ms * 2, MAX_DELAY_MS)
        logger.warning("Rate limit hit, backing off", extra={
            "source": source,
            "delay_ms": state.delay_ms
        })
        return state.delay_ms

    def on_success(self, source: str) -> None:
        """Reset the source delay to the base value."""
        self._state(source).delay_ms = BASE_DELAY_MS

    def get_delay(self, source: str) -> float:
        """Current delay for a source in milliseconds."""
        return self._state(source).delay_ms

    def snapshot(self) -> Dict[str, float]:
        """Current delay for every source seen so far."""
        return {source: state.delay_ms for source, state in self._states.items()}
