"""
Configuration management for Token Aggregator Service.
Uses pydantic-settings for environment variable management.
"""

from typing import List, Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="Token Aggregator", env="APP_NAME")
    app_version: str = Field(default="1.0.0", env="APP_VERSION")
    debug: bool = Field(default=False, env="DEBUG")

    # Server configuration
    server_host: str = Field(default="0.0.0.0", env="SERVER_HOST")
    server_port: int = Field(default=3000, env="SERVER_PORT")

    # Redis configuration
    redis_host: str = Field(default="localhost", env="REDIS_HOST")
    redis_port: int = Field(default=6379, env="REDIS_PORT")
    redis_db: int = Field(default=0, env="REDIS_DB")
    redis_password: Optional[str] = Field(default=None, env="REDIS_PASSWORD")

    # Cache TTL (in seconds)
    cache_ttl: int = Field(default=30, env="CACHE_TTL")

    # Scheduler configuration
    update_interval: float = Field(default=10.0, env="UPDATE_INTERVAL")  # seconds between ticks
    broadcast_top_n: int = Field(default=50, env="BROADCAST_TOP_N")
    default_search_query: str = Field(default="SOL", env="DEFAULT_SEARCH_QUERY")

    # Per-connection push queue size
    outbox_size: int = Field(default=100, env="OUTBOX_SIZE")

    # Upstream provider endpoints
    dexscreener_api_url: str = Field(default="https://api.dexscreener.com", env="DEXSCREENER_API_URL")
    jupiter_api_url: str = Field(default="https://price.jup.ag/v4/price", env="JUPITER_API_URL")
    geckoterminal_api_url: str = Field(default="https://api.geckoterminal.com/api/v2", env="GECKOTERMINAL_API_URL")

    # Token mints priced through Jupiter
    jupiter_token_ids: str = Field(
        default=(
            "So11111111111111111111111111111111111111112,"
            "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v,"
            "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263,"
            "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
        ),
        env="JUPITER_TOKEN_IDS"
    )

    # Approximate SOL price used to convert USD figures into SOL
    sol_price_usd: float = Field(default=100.0, env="SOL_PRICE_USD")

    # Logging configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    @validator('sol_price_usd')
    def validate_sol_price(cls, v: float) -> float:
        """SOL price is a divisor and must be positive."""
        if v <= 0:
            raise ValueError("sol_price_usd must be positive")
        return v

    @validator('update_interval')
    def validate_update_interval(cls, v: float) -> float:
        """Validate scheduler interval."""
        if v <= 0:
            raise ValueError("update_interval must be positive")
        return v

    @validator('log_level')
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {'json', 'text'}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(valid_formats)}")
        return v.lower()

    def get_jupiter_token_ids(self) -> List[str]:
        """Get Jupiter token mints as a list."""
        return [token_id.strip() for token_id in self.jupiter_token_ids.split(',') if token_id.strip()]

    def get_redis_url(self) -> str:
        """Get Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


class ProviderConfig:
    """Static configuration shared by the providers and the cache layer."""

    # Merge order for aggregation passes
    PROVIDER_ORDER = ('dexscreener', 'jupiter', 'geckoterminal')

    # Cache keys
    CACHE_KEYS = {
        'token_list': 'tokens:all:{timeframe}:{sort_by}',
        'token': 'token:{address}',
    }


provider_config = ProviderConfig()
