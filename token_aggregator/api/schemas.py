"""
Pydantic schemas for Token Aggregator Service.
Defines the normalized token records shared by providers, cache, API and push channel.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, validator


def now_ms() -> int:
    """Current wall-clock time in milliseconds since epoch."""
    return int(time.time() * 1000)


class SortBy(str, Enum):
    """Supported sort keys for token listings."""
    VOLUME = "volume"
    PRICE_CHANGE = "price_change"
    MARKET_CAP = "market_cap"


class Timeframe(str, Enum):
    """Supported listing timeframes."""
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"


class EventKind(str, Enum):
    """Push event kinds emitted to subscribed connections."""
    UPDATE = "token:update"
    PRICE_CHANGE = "token:price-change"
    VOLUME_SPIKE = "token:volume-spike"


class TokenRecord(BaseModel):
    """One provider's observation of one token."""
    token_address: str = Field(..., description="Provider-assigned token address")
    token_name: str = Field(..., description="Display name")
    token_ticker: str = Field(..., description="Ticker symbol")
    price_sol: float = Field(0.0, ge=0, description="Price in SOL")
    market_cap_sol: float = Field(0.0, ge=0, description="Market capitalization in SOL")
    volume_sol: float = Field(0.0, ge=0, description="24h volume in SOL")
    liquidity_sol: float = Field(0.0, ge=0, description="Liquidity in SOL")
    transaction_count: int = Field(0, ge=0, description="24h transaction count")
    price_1hr_change: float = Field(0.0, description="1 hour price change in percent")
    protocol: str = Field("Unknown", description="Originating protocol or exchange")
    sources: List[str] = Field(default_factory=list, description="Contributing source names")
    last_updated: int = Field(default_factory=now_ms, description="Observation time in ms since epoch")

    @validator('token_address')
    def validate_token_address(cls, v: str) -> str:
        """Validate token address."""
        if not v or not v.strip():
            raise ValueError("Token address cannot be empty")
        return v.strip()

    @validator('sources')
    def validate_sources(cls, v: List[str]) -> List[str]:
        """Sources behave like a set; keep first-seen order."""
        return list(dict.fromkeys(v))


class MergedTokenRecord(TokenRecord):
    """Token record produced by a merge pass; sources is the union of all contributors."""


class TokenQuery(BaseModel):
    """Listing query as parsed by the route layer."""
    limit: int = Field(30, ge=1, le=100, description="Page size")
    cursor: Optional[str] = Field(None, description="Opaque pagination cursor")
    sort_by: SortBy = Field(SortBy.VOLUME, description="Sort key")
    timeframe: Timeframe = Field(Timeframe.ONE_DAY, description="Listing timeframe")


class TokenPage(BaseModel):
    """One page of merged tokens."""
    tokens: List[MergedTokenRecord] = Field(..., description="Tokens in this page")
    next_cursor: Optional[str] = Field(None, alias="nextCursor", description="Cursor for the next page")


class CacheInvalidationResponse(BaseModel):
    """Model for cache invalidation response."""
    pattern: str = Field(..., description="Invalidated key pattern")
    deleted: int = Field(..., description="Number of deleted keys")


class HealthResponse(BaseModel):
    """Model for health check response."""
    status: Literal["healthy", "degraded"] = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    redis_connected: bool = Field(..., description="Redis connection status")
    provider_delays_ms: Dict[str, float] = Field(default_factory=dict, description="Current per-source throttle delay")
    background_tasks_running: bool = Field(..., description="Background tasks status")
    active_connections: int = Field(0, description="Connected push clients")
    last_data_update: Optional[datetime] = Field(None, description="Last successful aggregation tick")


class ErrorResponse(BaseModel):
    """Model for error responses."""
    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    details: Optional[Dict[str, str]] = Field(None, description="Additional error details")


# Type aliases for convenience
TokenList = List[TokenRecord]
MergedTokenList = List[MergedTokenRecord]
