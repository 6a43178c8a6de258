"""
DexScreener data provider implementation.
Searches DEX pairs and normalizes the base token of each pair.
"""

from typing import Any, List, Optional

import httpx

from .base import BaseTokenProvider, SourceUnavailableError, to_count, to_float, to_non_negative
from ..api.schemas import TokenRecord
from ..core.config import settings
from ..services.rate_limiter import RateLimiter


class DexScreenerProvider(BaseTokenProvider):
    """DexScreener pair search provider."""

    max_results = 30

    def __init__(self, rate_limiter: RateLimiter, client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            name="dexscreener",
            base_url=settings.dexscreener_api_url,
            rate_limiter=rate_limiter,
            client=client
        )

    async def _fetch(self, query: str) -> Any:
        return await self._make_request(
            f"{self.base_url}/latest/dex/search",
            params={'q': query}
        )

    def _extract_items(self, payload: Any) -> List[Any]:
        if not isinstance(payload, dict):
            raise SourceUnavailableError("Unexpected DexScreener payload", self.name)
        # A search with no matches returns "pairs": null
        return payload.get('pairs') or []

    def _create_token(self, pair: Any) -> TokenRecord:
        base_token = pair['baseToken']
        liquidity_usd = to_non_negative((pair.get('liquidity') or {}).get('usd'))
        volume = pair.get('volume') or {}
        txns_24h = (pair.get('txns') or {}).get('h24') or {}
        price_change = pair.get('priceChange') or {}

        return TokenRecord(
            token_address=base_token['address'],
            token_name=base_token.get('name') or 'Unknown',
            token_ticker=base_token.get('symbol') or 'UNK',
            price_sol=to_non_negative(pair.get('priceNative')),
            market_cap_sol=liquidity_usd / settings.sol_price_usd,
            volume_sol=to_non_negative(volume.get('h24')) / settings.sol_price_usd,
            liquidity_sol=liquidity_usd / settings.sol_price_usd,
            transaction_count=to_count(txns_24h.get('buys')) + to_count(txns_24h.get('sells')),
            price_1hr_change=to_float(price_change.get('h1')),
            protocol=pair.get('dexId') or 'Unknown',
            sources=[self.name],
        )
