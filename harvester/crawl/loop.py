"""Paginated crawl loop for one (source, category) pair.

Per page: fetch → parse → drop ids already in the run's SeenIdSet → hydrate
new records (when the source needs it) → persist → record progress →
advance the cursor. Pages run strictly in order, so the stored cursor is
always a valid resume point.

The loop ends on the first of:

- the caller's page ceiling
- the cursor offset reaching the source-reported total
- the source saying there are no more pages
- ``max_consecutive_empty_pages`` pages in a row that yielded no new items,
  failed to fetch or failed to persist (one shared streak counter)

A single failed page never aborts the run. An early stop still returns the
partial result.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import httpx

from harvester.crawl.seen_ids import SeenIdSet
from harvester.crawl.types import (
    CrawlCursor,
    CrawlResult,
    CrawlSession,
    ListingRecord,
    ListingSource,
    ListingStore,
    ParseContext,
    RawPage,
    SessionProgress,
    SessionStatus,
    TerminationReason,
)
from harvester.http.client import ResilientHttpClient
from harvester.middleware.error_handler import ExhaustedRetriesError, HarvesterError, PersistenceError
from harvester.monitoring.activity_log import ActivityLog, ActivityStatus
from harvester.monitoring.metrics import MetricsCollector
from harvester.parsing.fragments import FRAGMENT_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that make one page unrecoverable without ending the run
PAGE_ERRORS: tuple[type[Exception], ...] = (HarvesterError, httpx.HTTPError, *FRAGMENT_ERRORS)


async def hydrate_in_batches(
    items: Sequence[T],
    hydrate_batch: Callable[[list[T]], Awaitable[list[T]]],
    batch_size: int = 50,
) -> list[T]:
    """Hydrate ``items`` in sequential fixed-size batches."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    hydrated: list[T] = []
    for start in range(0, len(items), batch_size):
        hydrated.extend(await hydrate_batch(list(items[start : start + batch_size])))
    return hydrated


class CrawlLoop:
    """Drives one crawl run to a termination condition.

    Parameters
    ----------
    source:
        Fetches and parses pages.
    client:
        Shared resilient HTTP client.
    store:
        Idempotent listing store with session bookkeeping.
    max_pages:
        Page ceiling for this run, or None.
    max_consecutive_empty_pages:
        Length of the empty/failed streak that ends the run.
    hydration_batch_size:
        Batch size for sources with ``needs_hydration``.
    """

    def __init__(
        self,
        source: ListingSource,
        client: ResilientHttpClient,
        store: ListingStore,
        *,
        activity_log: ActivityLog | None = None,
        metrics: MetricsCollector | None = None,
        max_pages: int | None = None,
        max_consecutive_empty_pages: int = 5,
        hydration_batch_size: int = 50,
    ) -> None:
        if max_consecutive_empty_pages < 1:
            raise ValueError("max_consecutive_empty_pages must be >= 1")
        self._source = source
        self._client = client
        self._store = store
        self._activity_log = activity_log
        self._metrics = metrics
        self._max_pages = max_pages
        self._max_streak = max_consecutive_empty_pages
        self._hydration_batch_size = hydration_batch_size

    async def run(
        self,
        category: str,
        *,
        start_cursor: CrawlCursor | None = None,
        resume: bool = False,
    ) -> CrawlResult:
        """Crawl ``category`` until a termination condition holds.

        A resumed run continues the stored session's cursor and its page and
        item counters, so the result and the session report session totals.
        """
        name = self._source.name
        cursor = start_cursor or CrawlCursor()
        session_id: int | None = None
        resumed: CrawlSession | None = None

        if resume:
            last = self._safe_store_call(self._store.get_last_session, name, category)
            if last is not None and last.status != SessionStatus.COMPLETED and last.cursor:
                resumed = last
                cursor = last.cursor
                session_id = last.id
                logger.info(
                    "Resuming %s/%s from page %d",
                    name,
                    category,
                    cursor.page,
                    extra={"source": name, "category": category, "page": cursor.page},
                )

        if session_id is None:
            session_id = self._safe_store_call(self._store.create_session, name, category)

        result = CrawlResult(source=name, category=category, cursor=cursor, session_id=session_id)
        if resumed is not None:
            result.pages_scraped = resumed.pages_scraped
            result.items_found = resumed.items_found
            result.items_saved = resumed.items_saved
        seen = SeenIdSet(name, category)
        streak = 0
        pages_this_run = 0

        logger.info(
            "Crawl started: %s/%s",
            name,
            category,
            extra={"source": name, "category": category, "session_id": session_id},
        )

        while True:
            if self._max_pages is not None and pages_this_run >= self._max_pages:
                result.termination = TerminationReason.PAGE_LIMIT
                break

            page_number = cursor.page
            pages_this_run += 1

            # Fetching / Parsing
            try:
                raw = await self._source.fetch_page(self._client, category, cursor)
                context = ParseContext(
                    source=name,
                    category=category,
                    page=page_number,
                    activity_log=self._activity_log,
                )
                records = self._source.parse(raw, context)
            except PAGE_ERRORS as exc:
                streak += 1
                self._on_page_failed(result, category, page_number, exc)
                cursor = cursor.advance(self._source.page_size)
                result.cursor = cursor
                self._save_progress(session_id, result)
                if streak >= self._max_streak:
                    result.termination = TerminationReason.FAILURE_STREAK
                    break
                continue

            # Deduplicate, hydrate, persist
            new_records = seen.filter_new(records)
            duplicates = len(records) - len(new_records)
            persisted, saved = await self._persist(category, page_number, new_records, result)

            result.pages_scraped += 1
            result.items_found += len(records)
            result.items_saved += saved
            result.duplicates_skipped += duplicates

            if self._activity_log is not None:
                self._activity_log.log_parsing(name, category, page_number, len(records))
            if self._metrics is not None:
                self._metrics.record_page_scraped(name, category, page_number)
                self._metrics.record_items(name, len(records), saved, duplicates)

            logger.info(
                "Page %d: %d found, %d new, %d saved",
                page_number,
                len(records),
                len(new_records),
                saved,
                extra={
                    "source": name,
                    "category": category,
                    "page": page_number,
                    "items_found": len(records),
                    "items_saved": saved,
                },
            )

            # Advancing
            fetched = raw.item_count if raw.item_count is not None else len(records)
            cursor = cursor.advance(fetched, raw.next_token)
            result.cursor = cursor
            self._save_progress(session_id, result)

            if new_records and persisted:
                streak = 0
            else:
                streak += 1

            if streak >= self._max_streak:
                result.termination = (
                    TerminationReason.EMPTY_STREAK if persisted else TerminationReason.FAILURE_STREAK
                )
                break
            if self._reached_end(raw, cursor, result):
                break

        self._finish(session_id, result)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _persist(
        self,
        category: str,
        page_number: int,
        new_records: list[ListingRecord],
        result: CrawlResult,
    ) -> tuple[bool, int]:
        """Hydrate and upsert the page's new records. Returns (ok, saved)."""
        if not new_records:
            return True, 0

        name = self._source.name
        try:
            if self._source.needs_hydration:
                new_records = await hydrate_in_batches(
                    new_records,
                    lambda batch: self._source.hydrate_batch(self._client, batch),
                    self._hydration_batch_size,
                )
            saved = self._store.upsert(new_records)
        except PAGE_ERRORS as exc:
            message = f"Persist failed on page {page_number}: {exc}"
            result.last_error = message
            result.failed_pages.append(page_number)
            logger.error(
                message,
                extra={"source": name, "category": category, "page": page_number, "error_reason": str(exc)},
            )
            if self._activity_log is not None:
                self._activity_log.log_database(name, "upsert", 0, error=str(exc))
            if self._metrics is not None:
                self._metrics.record_error(name, message)
            return False, 0

        if self._activity_log is not None:
            self._activity_log.log_database(name, "upsert", saved)
        return True, saved

    def _on_page_failed(
        self,
        result: CrawlResult,
        category: str,
        page_number: int,
        exc: Exception,
    ) -> None:
        name = self._source.name
        message = f"Page {page_number} failed: {exc}"
        # The HTTP client already counted and logged an exhausted request
        counted = isinstance(exc, ExhaustedRetriesError)
        result.failed_pages.append(page_number)
        result.last_error = message
        logger.error(
            message,
            extra={"source": name, "category": category, "page": page_number, "error_reason": str(exc)},
        )
        if self._activity_log is not None:
            self._activity_log.log_error(
                name,
                message,
                {"category": category, "page": page_number},
                status=ActivityStatus.WARNING if counted else ActivityStatus.ERROR,
            )
        if self._metrics is not None:
            if counted:
                self._metrics.note_error(name, message)
            else:
                self._metrics.record_error(name, message)

    def _reached_end(self, raw: RawPage, cursor: CrawlCursor, result: CrawlResult) -> bool:
        if raw.total_count is not None and cursor.offset >= raw.total_count:
            result.termination = TerminationReason.TOTAL_REACHED
            return True
        if raw.has_more is False:
            result.termination = TerminationReason.NO_MORE_PAGES
            return True
        return False

    # ------------------------------------------------------------------
    # Session bookkeeping (never fatal)
    # ------------------------------------------------------------------

    def _save_progress(self, session_id: int | None, result: CrawlResult) -> None:
        if session_id is None:
            return
        self._safe_store_call(
            self._store.update_session,
            session_id,
            SessionProgress(
                status=SessionStatus.RUNNING,
                pages_scraped=result.pages_scraped,
                items_found=result.items_found,
                items_saved=result.items_saved,
                cursor=result.cursor,
                last_error=result.last_error,
            ),
        )

    def _finish(self, session_id: int | None, result: CrawlResult) -> None:
        level = logging.INFO if result.completed else logging.WARNING
        logger.log(
            level,
            "Crawl finished: %s/%s (%s) pages=%d found=%d saved=%d",
            result.source,
            result.category,
            result.termination.value if result.termination else "unknown",
            result.pages_scraped,
            result.items_found,
            result.items_saved,
            extra={"source": result.source, "category": result.category, "session_id": session_id},
        )
        if session_id is None:
            return
        self._safe_store_call(
            self._store.update_session,
            session_id,
            SessionProgress(
                status=SessionStatus.COMPLETED if result.completed else SessionStatus.FAILED,
                pages_scraped=result.pages_scraped,
                items_found=result.items_found,
                items_saved=result.items_saved,
                cursor=result.cursor,
                last_error=result.last_error,
            ),
        )

    def _safe_store_call(self, fn, *args):
        try:
            return fn(*args)
        except PersistenceError as exc:
            logger.warning(
                "Session bookkeeping failed: %s",
                exc,
                extra={"source": self._source.name, "error_reason": str(exc)},
            )
            return None
