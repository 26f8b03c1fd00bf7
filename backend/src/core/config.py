"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str
    db_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, validation_alias="DB_MAX_OVERFLOW")

    # Development mode - exposes exception details in 500 responses
    dev_mode: bool = Field(default=False, validation_alias="DEV_MODE")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:5173",
        validation_alias="CORS_ORIGINS",
    )

    # Redis - shared by the user cache and the rate limit counters
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")
    redis_socket_timeout: float = Field(default=2.0, validation_alias="REDIS_SOCKET_TIMEOUT")

    # Cache TTLs in seconds. Query results are the most volatile, single users the least.
    cache_ttl_user: int = Field(default=600, validation_alias="CACHE_TTL_USER")
    cache_ttl_all_users: int = Field(default=300, validation_alias="CACHE_TTL_ALL_USERS")
    cache_ttl_query: int = Field(default=120, validation_alias="CACHE_TTL_QUERY")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    rate_limit_global_window_ms: int = Field(
        default=15 * 60 * 1000, validation_alias="RATE_LIMIT_GLOBAL_WINDOW_MS",
    )
    rate_limit_global_max: int = Field(default=100, validation_alias="RATE_LIMIT_GLOBAL_MAX")
    rate_limit_read_window_ms: int = Field(
        default=60 * 1000, validation_alias="RATE_LIMIT_READ_WINDOW_MS",
    )
    rate_limit_read_max: int = Field(default=60, validation_alias="RATE_LIMIT_READ_MAX")
    rate_limit_write_window_ms: int = Field(
        default=5 * 60 * 1000, validation_alias="RATE_LIMIT_WRITE_WINDOW_MS",
    )
    rate_limit_write_max: int = Field(default=10, validation_alias="RATE_LIMIT_WRITE_MAX")
    rate_limit_admin_window_ms: int = Field(
        default=15 * 60 * 1000, validation_alias="RATE_LIMIT_ADMIN_WINDOW_MS",
    )
    rate_limit_admin_max: int = Field(default=20, validation_alias="RATE_LIMIT_ADMIN_MAX")

    @field_validator("cache_ttl_user", "cache_ttl_all_users", "cache_ttl_query")
    @classmethod
    def validate_ttl_is_finite(cls, v: int) -> int:
        """
        Reject non-positive TTLs.

        Every cache entry must expire: the TTL is the upper bound on staleness when
        explicit invalidation fails or races with a concurrent read.
        """
        if v <= 0:
            raise ValueError("Cache TTLs must be positive (cache entries may not be permanent)")
        return v

    @field_validator(
        "rate_limit_global_window_ms",
        "rate_limit_global_max",
        "rate_limit_read_window_ms",
        "rate_limit_read_max",
        "rate_limit_write_window_ms",
        "rate_limit_write_max",
        "rate_limit_admin_window_ms",
        "rate_limit_admin_max",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Rate limit windows and thresholds must be positive."""
        if v <= 0:
            raise ValueError("Rate limit windows and thresholds must be positive")
        return v

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
