"""
Abstract base class for token data providers in Token Aggregator.
Defines the fetch contract every upstream adapter follows.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..api.schemas import TokenRecord
from ..core.logging_config import create_logger
from ..services.rate_limiter import RateLimiter

logger = create_logger(__name__)

# Total deadline for one upstream call, connect through last body byte (seconds)
REQUEST_TIMEOUT = 5.0


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, message: str, provider: str):
        self.message = message
        self.provider = provider
        super().__init__(self.message)


class RateLimitError(ProviderError):
    """Exception raised when provider rate limit is exceeded."""
    pass


class SourceUnavailableError(ProviderError):
    """Exception raised on timeout, network failure or malformed payload."""
    pass


def to_float(value: Any) -> float:
    """Parse an upstream numeric field; missing, unparseable or non-finite values become 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_non_negative(value: Any) -> float:
    """Parse an upstream amount that can never be negative."""
    return max(to_float(value), 0.0)


def to_count(value: Any) -> int:
    """Parse an upstream counter."""
    return int(to_non_negative(value))


class BaseTokenProvider(ABC):
    """Abstract base class for token market data providers."""

    # Maximum records kept from a single call
    max_results: int = 0

    def __init__(
        self,
        name: str,
        base_url: str,
        rate_limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip('/')
        self.rate_limiter = rate_limiter
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)

            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
                limits=limits,
                headers=self._get_default_headers(),
                follow_redirects=True
            )
            self._owns_client = True

            logger.debug("Connected to provider", extra={"provider": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from provider", extra={"provider": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return {
            'User-Agent': 'Token-Aggregator/1.0.0',
            'Accept': 'application/json',
        }

    async def _make_request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Issue a single bounded GET request and return the decoded JSON body."""
        if not self.client:
            await self.connect()

        # httpx timeouts apply per phase and per chunk; wait_for bounds the whole call
        try:
            response = await asyncio.wait_for(
                self.client.get(url, params=params, timeout=REQUEST_TIMEOUT),
                timeout=REQUEST_TIMEOUT
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise SourceUnavailableError(f"Request timeout for {self.name}", self.name)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"HTTP error for {self.name}: {str(e)}", self.name)

        if response.status_code == 429:
            raise RateLimitError(f"Rate limited by {self.name}", self.name)

        if response.is_error:
            raise SourceUnavailableError(
                f"{self.name} responded with status {response.status_code}",
                self.name
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailableError(f"Invalid JSON response from {self.name}: {str(e)}", self.name)

    async def fetch_tokens(self, query: str) -> List[TokenRecord]:
        """
        Fetch and normalize tokens from this provider.

        Never raises: rate limiting widens the source delay, every other
        failure is logged, and both yield an empty list.
        """
        try:
            await self.rate_limiter.throttle(self.name)
            payload = await self._fetch(query)
            tokens = self._map_tokens(payload)[:self.max_results]
        except RateLimitError as e:
            self.rate_limiter.on_rate_limited(self.name)
            logger.warning("Provider rate limited", extra={
                "provider": self.name,
                "error": e.message
            })
            return []
        except Exception as e:
            logger.error("Failed to fetch tokens from provider", extra={
                "provider": self.name,
                "query": query,
                "error": str(e)
            })
            return []

        self.rate_limiter.on_success(self.name)
        logger.info("Retrieved tokens from provider", extra={
            "provider": self.name,
            "count": len(tokens)
        })
        return tokens

    def _map_tokens(self, payload: Any) -> List[TokenRecord]:
        """Map every item of the payload, skipping items that fail to normalize."""
        tokens = []
        for item in self._extract_items(payload):
            if len(tokens) >= self.max_results:
                break
            try:
                tokens.append(self._create_token(item))
            except Exception as e:
                logger.warning("Failed to process token item", extra={
                    "provider": self.name,
                    "error": str(e)
                })
                continue
        return tokens

    @abstractmethod
    async def _fetch(self, query: str) -> Any:
        """Issue the provider request and return the raw payload."""
        pass

    @abstractmethod
    def _extract_items(self, payload: Any) -> List[Any]:
        """
        Extract the list of raw token items from a payload.

        Raises:
            SourceUnavailableError: If the payload does not have the expected shape
        """
        pass

    @abstractmethod
    def _create_token(self, item: Any) -> TokenRecord:
        """Normalize one raw item into a TokenRecord."""
        pass
