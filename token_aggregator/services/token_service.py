"""
Cache-aside read path for token queries.
Checks the cache first, falls back to a live aggregation pass on miss and
writes non-empty results back with the configured TTL.
"""

from typing import List, Optional

from ..api.schemas import MergedTokenRecord, SortBy, Timeframe, TokenPage, TokenQuery
from ..core.config import settings, provider_config
from ..core.logging_config import create_logger
from .cache import CacheService
from .data_aggregator import DataAggregatorService, TokenNotFoundError
from .pagination import paginate

logger = create_logger(__name__)

_SORT_FIELDS = {
    SortBy.VOLUME: 'volume_sol',
    SortBy.PRICE_CHANGE: 'price_1hr_change',
    SortBy.MARKET_CAP: 'market_cap_sol',
}


def build_cache_key(sort_by: SortBy, timeframe: Timeframe) -> str:
    """Cache key for a listing; pagination never changes which records are cached."""
    return provider_config.CACHE_KEYS['token_list'].format(
        timeframe=Timeframe(timeframe).value,
        sort_by=SortBy(sort_by).value
    )


def sort_tokens(tokens: List[MergedTokenRecord], sort_by: SortBy = SortBy.VOLUME) -> List[MergedTokenRecord]:
    """Return a copy of tokens sorted descending by the requested key."""
    field_name = _SORT_FIELDS[SortBy(sort_by)]
    return sorted(tokens, key=lambda token: getattr(token, field_name), reverse=True)


class TokenService:
    """Serves token listings and single-token lookups through the cache."""

    def __init__(self, cache: CacheService, aggregator: DataAggregatorService, ttl: Optional[int] = None):
        self._cache = cache
        self._aggregator = aggregator
        self._ttl = ttl or settings.cache_ttl

    async def _load(self, cache_key: str) -> List[MergedTokenRecord]:
        tokens = await self._cache.get_tokens(cache_key)
        if tokens is not None:
            logger.debug("Cache hit", extra={"key": cache_key, "count": len(tokens)})
            return tokens

        tokens = await self._aggregator.aggregate()
        # Empty passes are never cached
        if tokens:
            await self._cache.set_tokens(cache_key, tokens, self._ttl)
        logger.info("Cache miss served by aggregation", extra={
            "key": cache_key,
            "count": len(tokens),
            "cached": bool(tokens)
        })
        return tokens

    async def get_tokens(self, query: TokenQuery) -> TokenPage:
        """
        Return one page of merged tokens for a listing query.

        Raises:
            InvalidCursorError: If the query cursor cannot be decoded
        """
        tokens = await self._load(build_cache_key(query.sort_by, query.timeframe))
        return paginate(sort_tokens(tokens, query.sort_by), query.limit, query.cursor)

    async def get_token(self, token_address: str) -> MergedTokenRecord:
        """
        Return the merged record for one token address.

        Raises:
            TokenNotFoundError: If no source reports the address
        """
        cache_key = provider_config.CACHE_KEYS['token'].format(address=token_address)
        cached = await self._cache.get_tokens(cache_key)
        if cached:
            return cached[0]

        token = await self._aggregator.find_token(token_address)
        await self._cache.set_tokens(cache_key, [token], self._ttl)
        return token

    async def invalidate(self, pattern: str) -> int:
        return await self._cache.invalidate(pattern)

