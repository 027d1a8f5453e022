"""Pydantic Settings for the listing harvester.

All environment variables use the HARVESTER_ prefix.
Example: HARVESTER_PORT=8000, HARVESTER_PROXY_ENDPOINTS='["http://u:p@host:1001"]'
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class HarvesterSettings(BaseSettings):
    """Harvester configuration validated from environment variables."""

    # Service
    port: int = 8000
    log_level: str = "INFO"
    data_dir: str = "data"

    # Activity log (shared across scraper processes)
    activity_db_path: str = "data/activities.db"
    activity_max_entries: int = Field(default=1000, ge=1)

    # Listing store
    store_db_path: str = "data/listings.db"

    # Proxy
    proxy_enabled: bool = True
    proxy_endpoints: list[str] = []
    proxy_rotation_interval: int = Field(default=10, ge=1)  # Rotate every N requests
    proxy_probe_url: str = "https://httpbin.org/ip"
    proxy_probe_timeout_seconds: float = Field(default=10.0, gt=0)
    proxy_health_check_interval_seconds: int = Field(default=60, ge=1)

    # HTTP client defaults (per-source overrides live in the source policy file)
    rate_limit_delay_ms: int = Field(default=2500, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    accept_language: str = "he-IL,he;q=0.9,en-US;q=0.8,en;q=0.7"

    # Crawl loop / worker pool
    max_consecutive_empty_pages: int = Field(default=5, ge=1)
    hydration_batch_size: int = Field(default=50, ge=1)
    worker_concurrency: int = Field(default=10, ge=1)
    progress_every: int = Field(default=100, ge=1)
    persist_batch_size: int = Field(default=100, ge=1)

    # Metrics
    unhealthy_consecutive_errors: int = Field(default=10, ge=1)

    # Watchdog
    watchdog_enabled: bool = True
    watchdog_check_interval_ms: int = Field(default=60_000, ge=100)
    watchdog_max_idle_time_ms: int = Field(default=300_000, ge=1000)
    watchdog_max_consecutive_errors: int = Field(default=10, ge=1)
    watchdog_auto_restart: bool = False
    watchdog_auto_restart_delay_ms: int = Field(default=30_000, ge=0)

    # Sources
    tracked_sources: list[str] = []
    source_policies_path: str = "config/sources.yaml"

    model_config = {"env_prefix": "HARVESTER_"}
