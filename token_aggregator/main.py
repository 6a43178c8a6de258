"""
Main FastAPI application for Token Aggregator Service.
Includes lifespan management for background tasks and service initialization.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from token_aggregator.api.endpoints import router as api_router
from token_aggregator.api.schemas import ErrorResponse
from token_aggregator.api.websocket import WebSocketTransport, router as ws_router
from token_aggregator.core.config import settings
from token_aggregator.core.logging_config import setup_logging, create_logger
from token_aggregator.services.broadcast import BroadcastService
from token_aggregator.services.cache import CacheService
from token_aggregator.services.data_aggregator import DataAggregatorService, build_default_providers
from token_aggregator.services.rate_limiter import RateLimiter
from token_aggregator.services.token_service import TokenService

# Setup logging first
setup_logging()
logger = create_logger(__name__)

startup_time = datetime.utcnow()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Builds the per-process services, starts the scheduler and tears both down on exit.
    """
    logger.info("Starting Token Aggregator Service", extra={
        "version": settings.app_version,
        "debug": settings.debug
    })

    rate_limiter = RateLimiter()
    transport = WebSocketTransport()
    broadcast_service = BroadcastService(transport)
    cache_service = CacheService()
    aggregator_service = DataAggregatorService(build_default_providers(rate_limiter), broadcast_service)

    app.state.rate_limiter = rate_limiter
    app.state.ws_transport = transport
    app.state.broadcast_service = broadcast_service
    app.state.cache_service = cache_service
    app.state.aggregator_service = aggregator_service
    app.state.token_service = TokenService(cache_service, aggregator_service)

    try:
        await cache_service.connect()
        await aggregator_service.initialize()
        await aggregator_service.start_background_tasks()
        logger.info("Token Aggregator Service started successfully", extra={
            "update_interval": settings.update_interval,
            "cache_ttl": settings.cache_ttl
        })
    except Exception as e:
        logger.error("Failed to start Token Aggregator Service", extra={
            "error": str(e)
        })
        raise

    yield  # Application is running

    logger.info("Shutting down Token Aggregator Service")

    try:
        await aggregator_service.shutdown()
        await broadcast_service.close()
        await cache_service.disconnect()
        logger.info("Token Aggregator Service shutdown completed")
    except Exception as e:
        logger.error("Error during service shutdown", extra={
            "error": str(e)
        })


app = FastAPI(
    title=settings.app_name,
    description="Multi-source token price aggregation with cached queries and live push updates",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "DELETE"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests and responses."""
    start_time = time.time()

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.error("Request failed", extra={
            "method": request.method,
            "url": str(request.url),
            "error": str(e),
            "process_time": round(process_time, 4),
            "client_ip": request.client.host if request.client else None
        })
        return JSONResponse(
            status_code=500,
            content=jsonable_encoder(ErrorResponse(
                error="Internal server error",
                error_code="INTERNAL_ERROR"
            ))
        )

    process_time = time.time() - start_time
    logger.info("Request completed", extra={
        "method": request.method,
        "url": str(request.url),
        "status_code": response.status_code,
        "process_time": round(process_time, 4),
        "client_ip": request.client.host if request.client else None
    })
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handle unknown routes with structured response."""
    return JSONResponse(
        status_code=404,
        content=jsonable_encoder(ErrorResponse(
            error=getattr(exc, "detail", None) or "Endpoint not found",
            error_code="NOT_FOUND",
            details={
                "path": request.url.path,
                "method": request.method
            }
        ))
    )


app.include_router(api_router, prefix="/api", tags=["Token API"])
app.include_router(ws_router, tags=["Push"])


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint with service information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "startup_time": startup_time,
        "timestamp": datetime.utcnow()
    }


@app.get("/healthz", include_in_schema=False)
async def healthz(request: Request):
    """Simple health check endpoint for load balancers."""
    aggregator_service = getattr(request.app.state, "aggregator_service", None)
    tasks_running = aggregator_service is not None and aggregator_service.are_background_tasks_running()

    if tasks_running:
        return {"status": "healthy"}
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "tasks": tasks_running}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "token_aggregator.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True
    )
