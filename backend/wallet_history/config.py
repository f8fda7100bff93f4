"""Configuration management for the application."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_title: str = "Wallet History API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # CORS Configuration
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Subscan Configuration
    subscan_api_url: str = "https://{network}.api.subscan.io"
    subscan_api_key: Optional[str] = None  # Optional API key for higher rate limits
    fetch_extrinsic_details: bool = True  # Resolve call params for each extrinsic
    detail_batch_size: int = 3

    # Transport Configuration
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.1

    # Pagination Configuration
    single_page_size: int = 50
    max_page: int = 10
    continuous_paging: bool = False  # False keeps the first-page-only pager gate

    # Cache Configuration
    max_local_history_items: int = 20
    history_namespace: str = "history"
    history_storage_path: str = "./history_cache.json"

    # Presentation
    exact_amounts: bool = False  # Decimal scaling instead of float division
    display_timezone: str = "UTC"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
