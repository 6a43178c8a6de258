"""
FastAPI dependencies resolving the per-process services built during startup.
"""

from fastapi.requests import HTTPConnection

from ..services.broadcast import BroadcastService
from ..services.cache import CacheService
from ..services.data_aggregator import DataAggregatorService
from ..services.rate_limiter import RateLimiter
from ..services.token_service import TokenService


def get_token_service(connection: HTTPConnection) -> TokenService:
    return connection.app.state.token_service


def get_cache_service(connection: HTTPConnection) -> CacheService:
    return connection.app.state.cache_service


def get_aggregator_service(connection: HTTPConnection) -> DataAggregatorService:
    return connection.app.state.aggregator_service


def get_broadcast_service(connection: HTTPConnection) -> BroadcastService:
    return connection.app.state.broadcast_service


def get_rate_limiter(connection: HTTPConnection) -> RateLimiter:
    return connection.app.state.rate_limiter


def get_ws_transport(connection: HTTPConnection):
    return connection.app.state.ws_transport
