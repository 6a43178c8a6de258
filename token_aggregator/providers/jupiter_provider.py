"""
Jupiter data provider implementation.
Prices a configured list of token mints through the Jupiter price API.
"""

from typing import Any, List, Optional

import httpx

from .base import BaseTokenProvider, SourceUnavailableError, to_non_negative
from ..api.schemas import TokenRecord
from ..core.config import settings
from ..services.rate_limiter import RateLimiter


class JupiterProvider(BaseTokenProvider):
    """Jupiter price provider. Only reports price; other numerics are 0."""

    max_results = 10

    def __init__(
        self,
        rate_limiter: RateLimiter,
        token_ids: Optional[List[str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            name="jupiter",
            base_url=settings.jupiter_api_url,
            rate_limiter=rate_limiter,
            client=client
        )
        self.token_ids = token_ids if token_ids is not None else settings.get_jupiter_token_ids()

    async def fetch_tokens(self, query: str) -> List[TokenRecord]:
        # Nothing to price, so no upstream call and no throttle slot is spent
        if not self.token_ids:
            return []
        return await super().fetch_tokens(query)

    async def _fetch(self, query: str) -> Any:
        return await self._make_request(
            self.base_url,
            params={'ids': ','.join(self.token_ids[:self.max_results])}
        )

    def _extract_items(self, payload: Any) -> List[Any]:
        if not isinstance(payload, dict):
            raise SourceUnavailableError("Unexpected Jupiter payload", self.name)
        data = payload.get('data') or {}
        if not isinstance(data, dict):
            raise SourceUnavailableError("Unexpected Jupiter price map", self.name)
        return list(data.items())

    def _create_token(self, item: Any) -> TokenRecord:
        token_id, price_data = item
        symbol = price_data.get('mintSymbol')

        return TokenRecord(
            token_address=token_id,
            token_name=symbol or 'Unknown',
            token_ticker=symbol or 'UNK',
            price_sol=to_non_negative(price_data.get('price')),
            protocol='Jupiter',
            sources=[self.name],
        )
