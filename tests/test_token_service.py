"""
Tests for TokenService: the cache-aside read path.
"""

from unittest.mock import AsyncMock

import pytest

from conftest import make_merged
from token_aggregator.api.schemas import SortBy, Timeframe, TokenQuery
from token_aggregator.services.cache import CacheService
from token_aggregator.services.data_aggregator import TokenNotFoundError
from token_aggregator.services.pagination import InvalidCursorError
from token_aggregator.services.token_service import TokenService, build_cache_key, sort_tokens


class FakeCache:
    """In-memory stand-in for CacheService that records writes."""

    def __init__(self):
        self.store = {}
        self.writes = []

    async def get_tokens(self, key):
        return self.store.get(key)

    async def set_tokens(self, key, tokens, ttl=None):
        self.store[key] = list(tokens)
        self.writes.append((key, ttl))

    async def invalidate(self, pattern):
        prefix = pattern.rstrip("*")
        keys = [key for key in self.store if key.startswith(prefix)]
        for key in keys:
            del self.store[key]
        return len(keys)


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def aggregator():
    aggregator = AsyncMock()
    aggregator.aggregate.return_value = [
        make_merged("low", volume=10, change=9.0, market_cap=300),
        make_merged("high", volume=30, change=1.0, market_cap=100),
        make_merged("mid", volume=20, change=5.0, market_cap=200),
    ]
    return aggregator


@pytest.fixture
def service(fake_cache, aggregator):
    return TokenService(fake_cache, aggregator, ttl=30)


def test_cache_key_format():
    assert build_cache_key(SortBy.VOLUME, Timeframe.ONE_DAY) == "tokens:all:24h:volume"
    assert build_cache_key(SortBy.PRICE_CHANGE, Timeframe.ONE_HOUR) == "tokens:all:1h:price_change"


@pytest.mark.parametrize("sort_by,expected", [
    (SortBy.VOLUME, ["high", "mid", "low"]),
    (SortBy.PRICE_CHANGE, ["low", "mid", "high"]),
    (SortBy.MARKET_CAP, ["low", "mid", "high"]),
])
def test_sort_tokens_descending(sort_by, expected):
    tokens = [
        make_merged("low", volume=10, change=9.0, market_cap=300),
        make_merged("high", volume=30, change=1.0, market_cap=100),
        make_merged("mid", volume=20, change=5.0, market_cap=200),
    ]

    assert [t.token_address for t in sort_tokens(tokens, sort_by)] == expected


class TestGetTokens:

    @pytest.mark.asyncio
    async def test_miss_aggregates_and_caches(self, service, fake_cache, aggregator):
        page = await service.get_tokens(TokenQuery())

        assert [t.token_address for t in page.tokens] == ["high", "mid", "low"]
        assert fake_cache.writes == [("tokens:all:24h:volume", 30)]
        aggregator.aggregate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_skips_aggregation(self, service, aggregator):
        await service.get_tokens(TokenQuery())
        await service.get_tokens(TokenQuery())

        aggregator.aggregate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pagination_does_not_change_cache_key(self, service, fake_cache, aggregator):
        first = await service.get_tokens(TokenQuery(limit=2))
        second = await service.get_tokens(TokenQuery(limit=2, cursor=first.next_cursor))

        assert [t.token_address for t in first.tokens] == ["high", "mid"]
        assert [t.token_address for t in second.tokens] == ["low"]
        assert second.next_cursor is None
        assert list(fake_cache.store) == ["tokens:all:24h:volume"]
        aggregator.aggregate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sort_key_selects_cache_entry(self, service, fake_cache):
        await service.get_tokens(TokenQuery(sort_by=SortBy.VOLUME))
        await service.get_tokens(TokenQuery(sort_by=SortBy.MARKET_CAP, timeframe=Timeframe.SEVEN_DAYS))

        assert set(fake_cache.store) == {"tokens:all:24h:volume", "tokens:all:7d:market_cap"}

    @pytest.mark.asyncio
    async def test_empty_pass_is_not_cached(self, service, fake_cache, aggregator):
        aggregator.aggregate.return_value = []

        first = await service.get_tokens(TokenQuery())
        await service.get_tokens(TokenQuery())

        assert first.tokens == []
        assert first.next_cursor is None
        assert fake_cache.writes == []
        assert aggregator.aggregate.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_cursor_raises(self, service):
        with pytest.raises(InvalidCursorError):
            await service.get_tokens(TokenQuery(cursor="%%%"))

    @pytest.mark.asyncio
    async def test_unavailable_cache_still_serves(self, aggregator):
        service = TokenService(CacheService(), aggregator)

        page = await service.get_tokens(TokenQuery())
        await service.get_tokens(TokenQuery())

        assert len(page.tokens) == 3
        assert aggregator.aggregate.await_count == 2


class TestGetToken:

    @pytest.mark.asyncio
    async def test_found_token_is_cached(self, service, fake_cache, aggregator):
        aggregator.find_token.return_value = make_merged("abc")

        token = await service.get_token("abc")
        again = await service.get_token("abc")

        assert token.token_address == again.token_address == "abc"
        assert fake_cache.writes == [("token:abc", 30)]
        aggregator.find_token.assert_awaited_once_with("abc")

    @pytest.mark.asyncio
    async def test_not_found_is_not_cached(self, service, fake_cache, aggregator):
        aggregator.find_token.side_effect = TokenNotFoundError("missing")

        with pytest.raises(TokenNotFoundError):
            await service.get_token("missing")

        assert fake_cache.writes == []


@pytest.mark.asyncio
async def test_invalidate_delegates_to_cache(service, fake_cache):
    await service.get_tokens(TokenQuery())

    assert await service.invalidate("tokens:*") == 1
    assert fake_cache.store == {}


@pytest.mark.asyncio
async def test_default_invalidation_covers_listing_and_token_keys(service, fake_cache, aggregator):
    aggregator.find_token.return_value = make_merged("abc")
    await service.get_tokens(TokenQuery())
    await service.get_token("abc")

    assert await service.invalidate("token*") == 2
    assert fake_cache.store == {}
