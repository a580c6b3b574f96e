from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "SiteTrack"
    debug: bool = False
    log_level: str | None = None  # env: LOG_LEVEL, overrides the debug-implied level

    # API
    frontend_url: str = "http://localhost:3000"
    cors_allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8081",
    ]

    # Document store
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "sitetrack"
    write_retry_attempts: int = 5  # env: WRITE_RETRY_ATTEMPTS, WATCH conflicts before PersistenceFailure
    redis_health_check_interval: int = 30  # seconds between PINGs on idle pooled connections
    redis_socket_timeout: float = 5.0

    # Live feed
    events_heartbeat_interval: int = 15  # seconds

    # Media binaries
    media_bucket: str = ""  # env: MEDIA_BUCKET, empty disables binary deletion
    aws_region: str = "us-east-1"


@lru_cache
def get_settings() -> Settings:
    return Settings()
