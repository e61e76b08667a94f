"""Application settings with environment variable support."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path


# Project root; the default database lives under its data/ directory
_BASE_DIR = Path(__file__).parent.parent.parent.resolve()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VESPER_",  # VESPER_DATABASE_URL, VESPER_PROXY_URL, etc.
    )

    # Database
    database_url: str = f"sqlite:///{_BASE_DIR / 'data' / 'vesper.db'}"

    # Proxy routes
    proxy_url: Optional[str] = None  # first-party, e.g. https://reader.example/api/fetch-feed
    relay_url: Optional[str] = None  # public relay, target is appended URL-encoded
    prefer_external_proxy: bool = True

    # Fetching
    fetch_timeout_seconds: float = 10.0
    fetch_max_retries: int = 2
    fetch_retry_base_delay: float = 0.5
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/130.0 Safari/537.36"
    )

    # Sync
    unread_limit: int = 50
    snippet_length: int = 150

    # Refresh sweeps
    refresh_concurrency: int = 3
    refresh_min_interval_seconds: float = 180.0
    refresh_interval_minutes: int = 15
    failure_backoff_base_seconds: float = 30.0
    failure_backoff_max_seconds: float = 900.0

    # Transport proxy
    proxy_timeout_seconds: float = 10.0
    proxy_max_bytes: int = 2 * 1024 * 1024
    proxy_allowed_origin: str = ""

    # Logging
    log_level: str = "INFO"


settings = Settings()
