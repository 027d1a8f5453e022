"""Composition of the crawl-side components for one scraper process.

Everything is constructed explicitly from ``HarvesterSettings`` and passed to
the collaborators that need it. The CLI builds exactly one ``CrawlRuntime``
per process; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from harvester.config.settings import HarvesterSettings
from harvester.crawl.detail_harvester import DetailHarvester, DetailHarvestResult
from harvester.crawl.loop import CrawlLoop
from harvester.crawl.types import CrawlResult, ListingSource
from harvester.http.client import ResilientHttpClient
from harvester.monitoring.activity_log import ActivityLog
from harvester.monitoring.metrics import MetricsCollector
from harvester.proxy.manager import ProxyPoolManager
from harvester.sources.registry import SourceRegistry
from harvester.storage.sqlite_store import SqliteListingStore

logger = logging.getLogger(__name__)


@dataclass
class CrawlRuntime:
    settings: HarvesterSettings
    activity_log: ActivityLog
    metrics: MetricsCollector
    proxy_manager: ProxyPoolManager
    store: SqliteListingStore
    registry: SourceRegistry


def build_crawl_runtime(settings: HarvesterSettings) -> CrawlRuntime:
    activity_log = ActivityLog(settings.activity_db_path, settings.activity_max_entries)
    return CrawlRuntime(
        settings=settings,
        activity_log=activity_log,
        metrics=MetricsCollector(
            activity_log,
            unhealthy_streak=settings.unhealthy_consecutive_errors,
        ),
        proxy_manager=ProxyPoolManager(
            rotation_interval=settings.proxy_rotation_interval,
            probe_url=settings.proxy_probe_url,
            probe_timeout_seconds=settings.proxy_probe_timeout_seconds,
            health_check_interval_seconds=settings.proxy_health_check_interval_seconds,
            activity_log=activity_log,
            enabled=settings.proxy_enabled,
        ),
        store=SqliteListingStore(settings.store_db_path),
        registry=SourceRegistry.from_yaml(settings.source_policies_path),
    )


async def run_source(
    runtime: CrawlRuntime,
    name: str,
    *,
    categories: list[str] | None = None,
    max_pages: int | None = None,
    resume: bool = False,
    offset: int = 0,
    limit: int | None = None,
) -> list[CrawlResult | DetailHarvestResult]:
    """Crawl every requested category of ``name`` in this process.

    ``CrawlAbortedError`` from a detail source's index fetch propagates.
    """
    settings = runtime.settings
    policy = runtime.registry.policy(name)
    source = runtime.registry.build(name)

    http_config = policy.http_config(settings)
    if http_config.use_proxy:
        await runtime.proxy_manager.initialize(settings.proxy_endpoints)
        # Advisory: a failed probe only downgrades the endpoint
        await runtime.proxy_manager.validate()

    client = ResilientHttpClient(
        name,
        http_config,
        proxy_manager=runtime.proxy_manager,
        activity_log=runtime.activity_log,
        metrics=runtime.metrics,
        accept_language=settings.accept_language,
    )

    results: list[CrawlResult | DetailHarvestResult] = []
    completed = False
    runtime.metrics.record_start(name)
    try:
        for category in categories or source.categories or [""]:
            if isinstance(source, ListingSource):
                loop = CrawlLoop(
                    source,
                    client,
                    runtime.store,
                    activity_log=runtime.activity_log,
                    metrics=runtime.metrics,
                    max_pages=max_pages or policy.max_pages,
                    max_consecutive_empty_pages=policy.max_consecutive_empty_pages
                    or settings.max_consecutive_empty_pages,
                    hydration_batch_size=settings.hydration_batch_size,
                )
                results.append(await loop.run(category, resume=resume))
            else:
                harvester = DetailHarvester(
                    source,
                    client,
                    runtime.store,
                    concurrency=policy.concurrency or settings.worker_concurrency,
                    persist_batch_size=settings.persist_batch_size,
                    progress_every=settings.progress_every,
                    activity_log=runtime.activity_log,
                    metrics=runtime.metrics,
                )
                results.append(await harvester.run(category, offset=offset, limit=limit))
        completed = True
    finally:
        runtime.metrics.record_stop(name, completed=completed)
        runtime.metrics.update_database_count(name, runtime.store.count(name))

    return results
