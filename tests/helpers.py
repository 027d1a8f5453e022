"""Fakes and hypothesis strategies shared by the harvester tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from hypothesis import strategies as st

from harvester.crawl.types import (
    CrawlCursor,
    CrawlSession,
    ListingFilters,
    ListingRecord,
    ListingSource,
    ParseContext,
    RawPage,
    SessionProgress,
    SessionStatus,
)
from harvester.http.client import HttpClientConfig
from harvester.middleware.error_handler import ExhaustedRetriesError, PersistenceError
from harvester.parsing.fragments import parse_fragments


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock whose sleep advances time instantly and records the delay."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_http_config(**overrides) -> HttpClientConfig:
    values = {
        "rate_limit_delay_ms": 0,
        "max_retries": 2,
        "retry_delay_ms": 0,
        "retry_backoff_multiplier": 1.0,
        "timeout_seconds": 5.0,
        "use_proxy": False,
    }
    values.update(overrides)
    return HttpClientConfig(**values)


# ---------------------------------------------------------------------------
# Store fake
# ---------------------------------------------------------------------------


class InMemoryStore:
    """ListingStore fake that records every call.

    ``fail_upserts`` holds 1-based upsert call numbers that raise PersistenceError.
    """

    def __init__(self, fail_upserts: set[int] | None = None) -> None:
        self.records: dict[tuple[str, str], ListingRecord] = {}
        self.upsert_calls: list[list[str]] = []
        self.sessions: dict[int, CrawlSession] = {}
        self.progress: list[SessionProgress] = []
        self._fail_upserts = fail_upserts or set()

    def upsert(self, records: list[ListingRecord]) -> int:
        self.upsert_calls.append([r.item_id for r in records])
        if len(self.upsert_calls) in self._fail_upserts:
            raise PersistenceError("disk full")
        for record in records:
            self.records[(record.source, record.item_id)] = record
        return len(records)

    def get_listings(self, filters: ListingFilters) -> list[ListingRecord]:
        found = [
            r
            for r in self.records.values()
            if (filters.source is None or r.source == filters.source)
            and (filters.category is None or r.category == filters.category)
        ]
        return found[filters.offset : filters.offset + filters.limit]

    def create_session(self, source: str, category: str) -> int:
        session_id = len(self.sessions) + 1
        now = datetime.now(timezone.utc)
        self.sessions[session_id] = CrawlSession(
            id=session_id,
            source=source,
            category=category,
            status=SessionStatus.RUNNING,
            started_at=now,
            updated_at=now,
        )
        return session_id

    def update_session(self, session_id: int, progress: SessionProgress) -> None:
        self.progress.append(progress)
        session = self.sessions[session_id]
        session.status = progress.status
        session.pages_scraped = progress.pages_scraped
        session.items_found = progress.items_found
        session.items_saved = progress.items_saved
        session.cursor = progress.cursor
        session.last_error = progress.last_error

    def get_last_session(self, source: str, category: str) -> CrawlSession | None:
        matching = [s for s in self.sessions.values() if s.source == source and s.category == category]
        return matching[-1] if matching else None

    @property
    def persisted_ids(self) -> list[str]:
        return [item_id for call in self.upsert_calls for item_id in call]


# ---------------------------------------------------------------------------
# Source fake
# ---------------------------------------------------------------------------

FAIL = "__fail__"


class ScriptedSource(ListingSource):
    """Listing source serving scripted pages.

    ``pages`` maps page number to a list of fragments (``{"id": ...}`` dicts;
    anything without an ``id`` is a malformed fragment) or to ``FAIL`` for a
    fetch that raises ``ExhaustedRetriesError``. Pages beyond the script are empty.
    """

    def __init__(
        self,
        pages: dict[int, object],
        *,
        name: str = "scripted",
        page_size: int = 10,
        total_count: int | None = None,
        has_more_until: int | None = None,
    ) -> None:
        self.name = name
        self.page_size = page_size
        self.categories = ["all"]
        self._pages = pages
        self._total_count = total_count
        self._has_more_until = has_more_until
        self.fetched: list[int] = []

    async def fetch_page(self, client, category: str, cursor: CrawlCursor) -> RawPage:
        self.fetched.append(cursor.page)
        script = self._pages.get(cursor.page, [])
        if script == FAIL:
            raise ExhaustedRetriesError(f"page {cursor.page} unreachable", attempts=3)
        has_more = None
        if self._has_more_until is not None:
            has_more = cursor.page < self._has_more_until
        return RawPage(
            content=script,
            total_count=self._total_count,
            has_more=has_more,
            item_count=len(script),
        )

    def parse(self, raw: RawPage, context: ParseContext) -> list[ListingRecord]:
        def parse_one(fragment: dict) -> ListingRecord:
            return ListingRecord(
                item_id=str(fragment["id"]),
                source=context.source,
                category=context.category,
                payload=fragment,
            )

        return parse_fragments(raw.content, parse_one, context)


def items(*ids: int | str) -> list[dict]:
    return [{"id": str(i), "title": f"Listing {i}"} for i in ids]


# ---------------------------------------------------------------------------
# Hypothesis strategies
# ---------------------------------------------------------------------------

item_ids = st.integers(min_value=1, max_value=60).map(str)

# Up to 8 pages of up to 12 ids drawn from a small pool, so repeats across pages are common
page_scripts = st.lists(
    st.lists(item_ids, max_size=12),
    min_size=1,
    max_size=8,
)

source_names = st.from_regex(r"[a-z][a-z0-9_]{2,15}", fullmatch=True)


def scripted(name: str, categories: list[str] | None = None, **options) -> ScriptedSource:
    """Registry factory building a ScriptedSource from policy options."""
    source = ScriptedSource(options.pop("pages", {}), name=name, **options)
    if categories:
        source.categories = list(categories)
    return source
