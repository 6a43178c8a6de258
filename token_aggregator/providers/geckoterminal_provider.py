"""
GeckoTerminal data provider implementation.
Lists Solana network tokens from the GeckoTerminal API.
"""

from typing import Any, List, Optional

import httpx

from .base import BaseTokenProvider, SourceUnavailableError, to_non_negative
from ..api.schemas import TokenRecord
from ..core.config import settings
from ..services.rate_limiter import RateLimiter


class GeckoTerminalProvider(BaseTokenProvider):
    """GeckoTerminal network token provider."""

    max_results = 20

    def __init__(self, rate_limiter: RateLimiter, client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            name="geckoterminal",
            base_url=settings.geckoterminal_api_url,
            rate_limiter=rate_limiter,
            client=client
        )

    async def _fetch(self, query: str) -> Any:
        return await self._make_request(
            f"{self.base_url}/networks/solana/tokens",
            params={'page': 1}
        )

    def _extract_items(self, payload: Any) -> List[Any]:
        if not isinstance(payload, dict):
            raise SourceUnavailableError("Unexpected GeckoTerminal payload", self.name)
        data = payload.get('data') or []
        if not isinstance(data, list):
            raise SourceUnavailableError("Unexpected GeckoTerminal token list", self.name)
        return data

    def _create_token(self, item: Any) -> TokenRecord:
        attributes = item['attributes']
        volume_usd = attributes.get('volume_usd') or {}

        return TokenRecord(
            token_address=attributes['address'],
            token_name=attributes.get('name') or 'Unknown',
            token_ticker=attributes.get('symbol') or 'UNK',
            price_sol=to_non_negative(attributes.get('price_usd')) / settings.sol_price_usd,
            market_cap_sol=to_non_negative(attributes.get('fdv_usd')) / settings.sol_price_usd,
            volume_sol=to_non_negative(volume_usd.get('h24')) / settings.sol_price_usd,
            protocol='GeckoTerminal',
            sources=[self.name],
        )
