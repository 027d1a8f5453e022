"""Detail fan-out harvester.

For sources whose index (typically a sitemap) lists thousands of detail-page
URLs: fetch the index, discover item URLs, apply offset/limit, drop URLs
already seen in this run, fan out one fetch per item through the bounded
worker pool and persist records in chunks as they complete.

Failing to fetch or read the index is terminal for the run (``CrawlAbortedError``);
individual item failures are collected and reported.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from harvester.crawl.seen_ids import SeenIdSet
from harvester.crawl.types import DetailListingSource, ListingRecord, ListingStore
from harvester.crawl.worker_pool import BoundedWorkerPool, ItemOutcome, PoolProgress
from harvester.http.client import ResilientHttpClient
from harvester.middleware.error_handler import (
    CrawlAbortedError,
    NetworkError,
    ParseError,
    PersistenceError,
)
from harvester.monitoring.activity_log import ActivityLog
from harvester.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class DetailHarvestResult:
    source: str
    category: str
    discovered: int = 0
    attempted: int = 0
    skipped_seen: int = 0
    successful: int = 0
    failed: int = 0
    items_saved: int = 0
    failed_urls: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class DetailHarvester:
    """Index → item URLs → bounded concurrent detail fetches → chunked upserts."""

    def __init__(
        self,
        source: DetailListingSource,
        client: ResilientHttpClient,
        store: ListingStore,
        *,
        concurrency: int = 10,
        persist_batch_size: int = 100,
        progress_every: int = 100,
        activity_log: ActivityLog | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._source = source
        self._client = client
        self._store = store
        self._concurrency = concurrency
        self._persist_batch_size = max(1, persist_batch_size)
        self._progress_every = progress_every
        self._activity_log = activity_log
        self._metrics = metrics

    async def run(
        self,
        category: str = "",
        *,
        offset: int = 0,
        limit: int | None = None,
        seen: SeenIdSet | None = None,
    ) -> DetailHarvestResult:
        name = self._source.name
        started = time.monotonic()
        seen = seen if seen is not None else SeenIdSet(name, category)
        result = DetailHarvestResult(source=name, category=category)

        # Index fetch: failure ends the run
        try:
            index = await self._client.get(self._source.index_url)
        except NetworkError as exc:
            raise CrawlAbortedError(
                f"Index fetch failed for {name}: {exc}",
                source=name,
                url=self._source.index_url,
            ) from exc

        try:
            urls = self._source.discover(index)
        except ParseError as exc:
            raise CrawlAbortedError(
                f"Index for {name} could not be read: {exc}",
                source=name,
                url=self._source.index_url,
            ) from exc
        result.discovered = len(urls)
        window = urls[offset:] if limit is None else urls[offset : offset + limit]
        pending = seen.filter_new_keys(window)
        result.skipped_seen = len(window) - len(pending)
        result.attempted = len(pending)

        logger.info(
            "Discovered %d item URLs, fetching %d (offset=%d, limit=%s)",
            len(urls),
            len(pending),
            offset,
            limit,
            extra={"source": name, "category": category},
        )

        buffer: list[ListingRecord] = []

        def _collect(outcome: ItemOutcome) -> None:
            if outcome.success and outcome.result is not None:
                buffer.append(outcome.result)
                if len(buffer) >= self._persist_batch_size:
                    result.items_saved += self._flush(buffer, category)

        def _progress(progress: PoolProgress) -> None:
            if self._activity_log is not None:
                self._activity_log.log_parsing(
                    name, category, progress.completed, progress.successful
                )

        pool = BoundedWorkerPool(
            self._concurrency,
            progress_every=self._progress_every,
            on_progress=_progress,
            on_outcome=_collect,
        )
        pool_result = await pool.run_all(
            pending, lambda url: self._source.fetch_item(self._client, url)
        )
        result.items_saved += self._flush(buffer, category)

        result.successful = pool_result.success_count
        result.failed = pool_result.failure_count
        result.failed_urls = list(pool_result.failed_items)
        result.duration_seconds = round(time.monotonic() - started, 2)

        if self._metrics is not None:
            self._metrics.record_items(name, result.successful, result.items_saved)

        for url in result.failed_urls:
            logger.debug("Failed item: %s", url, extra={"source": name, "url": url})
        logger.info(
            "Detail harvest finished: %d ok, %d failed, %d saved in %.1fs",
            result.successful,
            result.failed,
            result.items_saved,
            result.duration_seconds,
            extra={"source": name, "category": category, "items_saved": result.items_saved},
        )
        return result

    def _flush(self, buffer: list[ListingRecord], category: str) -> int:
        """Upsert and empty the buffer. A failed chunk is logged, not raised."""
        if not buffer:
            return 0
        chunk = list(buffer)
        buffer.clear()
        name = self._source.name
        try:
            saved = self._store.upsert(chunk)
        except PersistenceError as exc:
            logger.error(
                "Failed to persist %d records: %s",
                len(chunk),
                exc,
                extra={"source": name, "category": category, "error_reason": str(exc)},
            )
            if self._activity_log is not None:
                self._activity_log.log_database(name, "upsert", 0, error=str(exc))
            if self._metrics is not None:
                self._metrics.record_error(name, f"Persist failed: {exc}")
            return 0

        if self._activity_log is not None:
            self._activity_log.log_database(name, "upsert", saved)
        return saved
