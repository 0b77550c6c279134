from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Application
    app_name: str = "Short Links"
    app_version: str = "1.0.0"

    # Database
    database_url: str = "sqlite:///./shortlinks.db"

    # Short code generation
    base_url: str = "http://127.0.0.1:8000"
    short_code_length: int = 6
    max_retries: int = 10  # Regenerate attempts on code collision

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Cache settings
    cache_backend: str = "redis"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 2.0
    url_cache_ttl: int = 3600  # Single URL snapshots (1 hour)
    list_cache_ttl: int = 300  # Per-owner paginated lists (5 minutes)
    analytics_cache_ttl: int = 300  # Per-URL analytics views (5 minutes)

    # Event channel settings
    queue_backend: str = "redis_streams"  # Options: "redis_streams", "memory"
    queue_consumer_group: str = "shortlinks_workers"
    queue_batch_size: int = 100
    queue_block_ms: int = 1000
    message_retention_seconds: int = 86400  # Undelivered events are dropped after 24h
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 5

    # Hit storage (raw click events written by the worker)
    hit_storage_sqlite_path: str = "analytics.db"

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
