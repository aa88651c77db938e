from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Storage
    DATABASE_URL: str = "sqlite+aiosqlite:///./shortlinks.db"
    STORAGE_FALLBACK_TO_MEMORY: bool = True

    # Domain
    BASE_URL: str = "http://localhost:8080"

    # Short codes
    SHORT_CODE_LENGTH: int = 6
    SHORT_CODE_MAX_ATTEMPTS: int = 10

    # Expiration
    DEFAULT_EXPIRATION_DAYS: int = 365
    MAX_EXPIRATION_DAYS: int = 3650

    # Security
    PASSWORD_HASH_ITERATIONS: int = 100_000
    REJECT_SUSPICIOUS_URLS: bool = True

    # Rate Limiting
    SHORTEN_RATE_LIMIT: int = 10
    SHORTEN_RATE_WINDOW_MS: int = 60 * 1000  # 1 minute
    RATE_LIMIT_BLOCK_MS: int = 10 * 60 * 1000  # 10 minutes
    LIMITER_REGISTRY_SIZE: int = 1000
    LIMITER_REGISTRY_TTL_SECONDS: int = 60 * 60
    CONCURRENCY_REGISTRY_SIZE: int = 100
    CONCURRENCY_REGISTRY_TTL_SECONDS: int = 30 * 60

    # Analytics cache
    ANALYTICS_CACHE_SIZE: int = 200
    ANALYTICS_CACHE_TTL_SECONDS: int = 5 * 60

    # Maintenance
    CLEANUP_INTERVAL_SECONDS: int = 10 * 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"


settings = Settings()
