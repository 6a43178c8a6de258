"""
Data aggregator service for Token Aggregator.
Fans out to every provider concurrently, merges the results and drives the
periodic update loop that feeds the broadcast layer.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..api.schemas import MergedTokenRecord
from ..core.config import settings, provider_config
from ..core.logging_config import create_logger
from ..providers.base import BaseTokenProvider
from ..providers.dexscreener_provider import DexScreenerProvider
from ..providers.geckoterminal_provider import GeckoTerminalProvider
from ..providers.jupiter_provider import JupiterProvider
from .broadcast import BroadcastService
from .merge import merge_token_data
from .rate_limiter import RateLimiter

logger = create_logger(__name__)


class TokenNotFoundError(Exception):
    """Raised when no source reports the requested token address."""

    def __init__(self, token_address: str):
        self.token_address = token_address
        super().__init__(f"Token not found: {token_address}")


def build_default_providers(rate_limiter: RateLimiter) -> Dict[str, BaseTokenProvider]:
    """Create one adapter per upstream source, keyed in merge order."""
    providers = {
        'dexscreener': DexScreenerProvider(rate_limiter),
        'jupiter': JupiterProvider(rate_limiter),
        'geckoterminal': GeckoTerminalProvider(rate_limiter),
    }
    return {name: providers[name] for name in provider_config.PROVIDER_ORDER}


class DataAggregatorService:
    """Service that orchestrates token fetching from multiple providers."""

    def __init__(
        self,
        providers: Dict[str, BaseTokenProvider],
        broadcaster: Optional[BroadcastService] = None,
    ):
        # Dict order is the merge order
        self._providers = dict(providers)
        self._broadcaster = broadcaster
        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._last_tick: Optional[datetime] = None

    async def initialize(self) -> None:
        """Open HTTP clients for all providers."""
        logger.info("Initializing data aggregator service")

        for name, provider in self._providers.items():
            try:
                await provider.connect()
                logger.info("Initialized provider", extra={"provider": name})
            except Exception as e:
                logger.error("Failed to initialize provider", extra={
                    "provider": name,
                    "error": str(e)
                })
                # Providers connect lazily on first request as well
                continue

        logger.info("Data aggregator service initialized", extra={
            "providers": list(self._providers.keys())
        })

    async def shutdown(self) -> None:
        """Stop background tasks and close provider clients."""
        logger.info("Shutting down data aggregator service")

        self._shutdown_event.set()

        for task in self._running_tasks:
            if not task.done():
                task.cancel()

        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)
        self._running_tasks.clear()

        for provider in self._providers.values():
            try:
                await provider.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting provider", extra={
                    "provider": provider.name,
                    "error": str(e)
                })

        logger.info("Data aggregator service shutdown complete")

    async def aggregate(self, query: Optional[str] = None) -> List[MergedTokenRecord]:
        """
        Run one aggregation pass across all providers.

        Every provider runs concurrently and settles on its own; a failed
        provider contributes an empty list. An empty return value means no
        source produced data and is not an error.
        """
        query = query or settings.default_search_query
        names = list(self._providers.keys())

        results = await asyncio.gather(
            *(provider.fetch_tokens(query) for provider in self._providers.values()),
            return_exceptions=True
        )

        source_results = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error("Provider raised during aggregation", extra={
                    "provider": name,
                    "error": str(result)
                })
                result = []
            source_results.append(result)

        merged = merge_token_data(source_results)

        if not merged:
            logger.warning("All sources returned no data", extra={"query": query})
        else:
            logger.info("Aggregation completed", extra={
                "query": query,
                "per_source": {name: len(result) for name, result in zip(names, source_results)},
                "merged": len(merged)
            })

        return merged

    async def find_token(self, token_address: str, query: Optional[str] = None) -> MergedTokenRecord:
        """
        Aggregate and return the merged record for one token address.

        Raises:
            TokenNotFoundError: If no source reports the address
        """
        for token in await self.aggregate(query):
            if token.token_address == token_address:
                return token
        raise TokenNotFoundError(token_address)

    async def run_aggregation_tick(self) -> int:
        """One scheduler pass: aggregate and publish the top tokens. Returns the number published."""
        try:
            tokens = await self.aggregate()
        except Exception as e:
            logger.error("Error in aggregation tick", extra={"error": str(e)})
            return 0

        self._last_tick = datetime.utcnow()

        if not tokens or self._broadcaster is None:
            return 0

        top_tokens = tokens[:settings.broadcast_top_n]
        self._broadcaster.publish_many(top_tokens)
        logger.info("Broadcasted token updates", extra={"count": len(top_tokens)})
        return len(top_tokens)

    async def start_background_tasks(self) -> None:
        """Start the periodic update loop."""
        self._shutdown_event.clear()
        update_task = asyncio.create_task(self.run_update_loop())
        self._running_tasks.append(update_task)

        logger.info("Background tasks started", extra={
            "tasks": len(self._running_tasks)
        })

    async def run_update_loop(self) -> None:
        """Background task running one aggregation tick per interval."""
        logger.info("Starting token update loop", extra={
            "interval": settings.update_interval
        })

        while not self._shutdown_event.is_set():
            start_time = datetime.utcnow()
            published = await self.run_aggregation_tick()

            logger.debug("Token update tick finished", extra={
                "published": published,
                "duration_seconds": (datetime.utcnow() - start_time).total_seconds(),
                "next_update": start_time + timedelta(seconds=settings.update_interval)
            })

            # Wait for next update cycle
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=settings.update_interval
                )
                break  # Shutdown event was set
            except asyncio.TimeoutError:
                continue

    def get_provider_names(self) -> List[str]:
        return list(self._providers.keys())

    def get_provider_status(self) -> Dict[str, Dict[str, Any]]:
        """Get connection and throttle state of all providers."""
        return {
            name: {
                "connected": provider.client is not None,
                "delay_ms": provider.rate_limiter.get_delay(name),
                "max_results": provider.max_results,
            }
            for name, provider in self._providers.items()
        }

    def get_last_update_time(self) -> Optional[datetime]:
        """Timestamp of the last completed aggregation tick."""
        return self._last_tick

    def are_background_tasks_running(self) -> bool:
        """Check if background tasks are running."""
        return any(not task.done() for task in self._running_tasks)
