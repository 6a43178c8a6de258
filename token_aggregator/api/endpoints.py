"""
FastAPI endpoints for Token Aggregator Service.
Serves merged token data through the cache-aside read path.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .dependencies import (
    get_aggregator_service, get_broadcast_service, get_cache_service,
    get_rate_limiter, get_token_service
)
from .schemas import (
    CacheInvalidationResponse, ErrorResponse, HealthResponse, MergedTokenRecord,
    SortBy, Timeframe, TokenPage, TokenQuery
)
from ..core.config import settings
from ..core.logging_config import create_logger
from ..services.broadcast import BroadcastService
from ..services.cache import CacheService
from ..services.data_aggregator import DataAggregatorService, TokenNotFoundError
from ..services.pagination import InvalidCursorError
from ..services.rate_limiter import RateLimiter
from ..services.token_service import TokenService

logger = create_logger(__name__)

# Create API router
router = APIRouter()

# Application startup time for uptime calculation
app_start_time = datetime.utcnow()


@router.get("/tokens", response_model=TokenPage)
async def get_tokens(
    limit: int = Query(30, ge=1, le=100, description="Page size"),
    cursor: Optional[str] = Query(None, description="Opaque cursor from a previous page"),
    sort_by: SortBy = Query(SortBy.VOLUME, alias="sortBy", description="Sort key"),
    timeframe: Timeframe = Query(Timeframe.ONE_DAY, description="Listing timeframe"),
    token_service: TokenService = Depends(get_token_service),
):
    """
    Get a page of merged tokens.

    Args:
        limit: Number of tokens per page (1-100)
        cursor: Cursor returned as nextCursor by the previous page
        sort_by: volume, price_change or market_cap, descending
        timeframe: 1h, 24h or 7d

    Returns:
        Page of tokens with the cursor for the next page, null on the last page
    """
    query = TokenQuery(limit=limit, cursor=cursor, sort_by=sort_by, timeframe=timeframe)

    try:
        page = await token_service.get_tokens(query)
    except InvalidCursorError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Tokens request served", extra={
        "sort_by": sort_by.value,
        "timeframe": timeframe.value,
        "limit": limit,
        "returned": len(page.tokens),
        "has_more": page.next_cursor is not None
    })
    return page


@router.get(
    "/tokens/{address}",
    response_model=MergedTokenRecord,
    responses={404: {"model": ErrorResponse}}
)
async def get_token(address: str, token_service: TokenService = Depends(get_token_service)):
    """Get the merged record for a single token address."""
    try:
        return await token_service.get_token(address)
    except TokenNotFoundError:
        logger.info("Token not found", extra={"address": address})
        return JSONResponse(
            status_code=404,
            content=jsonable_encoder(ErrorResponse(
                error="Token not found",
                error_code="TOKEN_NOT_FOUND",
                details={"address": address}
            ))
        )


@router.delete("/cache", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    pattern: str = Query("token*", min_length=1, description="Glob pattern of keys to delete"),
    token_service: TokenService = Depends(get_token_service),
):
    """
    Invalidate cached entries matching a key pattern.

    The default pattern covers both listing keys (tokens:all:...) and
    single-token keys (token:{address}).
    """
    deleted = await token_service.invalidate(pattern)
    return CacheInvalidationResponse(pattern=pattern, deleted=deleted)


@router.get("/providers/status")
async def get_provider_status(aggregator: DataAggregatorService = Depends(get_aggregator_service)):
    """
    Get status information about all upstream sources.

    Returns:
        Connection state, current throttle delay and result cap per source
    """
    provider_status = aggregator.get_provider_status()

    logger.info("Provider status retrieved", extra={
        "providers": list(provider_status.keys())
    })

    return {
        "providers": provider_status,
        "timestamp": datetime.utcnow()
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(
    cache: CacheService = Depends(get_cache_service),
    aggregator: DataAggregatorService = Depends(get_aggregator_service),
    broadcaster: BroadcastService = Depends(get_broadcast_service),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Health check endpoint.
    Reports cache connectivity, scheduler state and per-source throttle delays.
    """
    redis_healthy = await cache.health_check()
    tasks_running = aggregator.are_background_tasks_running()

    delays = {name: rate_limiter.get_delay(name) for name in aggregator.get_provider_names()}

    return HealthResponse(
        status="healthy" if redis_healthy and tasks_running else "degraded",
        version=settings.app_version,
        uptime_seconds=(datetime.utcnow() - app_start_time).total_seconds(),
        redis_connected=redis_healthy,
        provider_delays_ms=delays,
        background_tasks_running=tasks_running,
        active_connections=broadcaster.connection_count,
        last_data_update=aggregator.get_last_update_time()
    )
