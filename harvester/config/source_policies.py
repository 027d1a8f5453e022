"""Per-source crawl policy models and YAML loader.

Provides typed Pydantic models for per-source crawl policies and a loader
function that parses the YAML config into those models. Any field left unset
in the YAML falls back to the process-wide ``HarvesterSettings`` value.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field

from harvester.config.settings import HarvesterSettings

if TYPE_CHECKING:
    from harvester.http.client import HttpClientConfig

logger = logging.getLogger(__name__)


class SourcePolicy(BaseModel):
    """Crawl policy for a single listing source."""

    factory: str | None = None  # "package.module:callable" returning a ListingSource
    options: dict[str, Any] = {}  # Keyword arguments passed to the factory
    categories: list[str] = []
    rate_limit_delay_ms: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_ms: int | None = Field(default=None, ge=0)
    retry_backoff_multiplier: float | None = Field(default=None, ge=1.0)
    use_proxy: bool = True
    max_pages: int | None = Field(default=None, ge=1)
    max_consecutive_empty_pages: int | None = Field(default=None, ge=1)
    concurrency: int | None = Field(default=None, ge=1)

    def http_config(self, settings: HarvesterSettings) -> "HttpClientConfig":
        """Merge this policy's HTTP overrides with the settings defaults."""
        from harvester.http.client import HttpClientConfig

        return HttpClientConfig(
            rate_limit_delay_ms=_pick(self.rate_limit_delay_ms, settings.rate_limit_delay_ms),
            max_retries=_pick(self.max_retries, settings.max_retries),
            retry_delay_ms=_pick(self.retry_delay_ms, settings.retry_delay_ms),
            retry_backoff_multiplier=_pick(
                self.retry_backoff_multiplier, settings.retry_backoff_multiplier
            ),
            timeout_seconds=settings.request_timeout_seconds,
            use_proxy=self.use_proxy and settings.proxy_enabled,
        )


def _pick(value, default):
    return default if value is None else value


def load_source_policies(yaml_path: str) -> dict[str, SourcePolicy]:
    """Parse a source policies YAML file into typed SourcePolicy objects.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict mapping source names to SourcePolicy instances. Returns an
        empty dict when the file is missing or malformed.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Source policies file not found at %s", yaml_path)
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse source policies YAML at %s: %s", yaml_path, exc)
        return {}

    if not isinstance(raw, dict) or "sources" not in raw:
        logger.warning("Source policies YAML missing 'sources' key")
        return {}

    policies: dict[str, SourcePolicy] = {}
    for name, config in (raw["sources"] or {}).items():
        try:
            policies[name] = SourcePolicy.model_validate(config or {})
        except Exception as exc:
            logger.error("Invalid policy for source '%s': %s, skipping", name, exc)

    return policies
