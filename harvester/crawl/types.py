"""Crawl data models and the collaborator interfaces the crawl engine consumes."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from harvester.http.client import ResilientHttpClient
    from harvester.monitoring.activity_log import ActivityLog


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ListingRecord(BaseModel):
    """One harvested listing. Identity within a source is ``item_id``."""

    item_id: str = Field(min_length=1)
    source: str
    category: str = ""
    url: str | None = None
    payload: dict[str, Any] = {}


class ListingFilters(BaseModel):
    source: str | None = None
    category: str | None = None
    since: datetime | None = None
    limit: int = Field(default=100, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Cursor and raw pages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrawlCursor:
    """Progress marker for one crawl: page number, item offset and optional API token."""

    page: int = 1
    offset: int = 0
    token: str | None = None

    def advance(self, fetched: int, token: str | None = None) -> CrawlCursor:
        return replace(self, page=self.page + 1, offset=self.offset + max(0, fetched), token=token)

    def to_json(self) -> str:
        return json.dumps({"page": self.page, "offset": self.offset, "token": self.token})

    @classmethod
    def from_json(cls, raw: str | None) -> CrawlCursor:
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            page=int(data.get("page", 1)),
            offset=int(data.get("offset", 0)),
            token=data.get("token"),
        )


@dataclass
class RawPage:
    """Unparsed page content plus whatever paging hints the source exposes.

    ``item_count`` is the number of raw items on the page; it advances the
    cursor offset. When ``None`` the number of parsed records is used.
    """

    content: Any
    total_count: int | None = None
    has_more: bool | None = None
    next_token: str | None = None
    item_count: int | None = None


@dataclass
class ParseContext:
    source: str
    category: str
    page: int
    url: str | None = None
    activity_log: ActivityLog | None = None


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class ListingSource(ABC):
    """A paginated listing source: how to fetch one page and parse it.

    Subclasses set ``name``, ``page_size`` and ``categories`` and implement
    ``fetch_page`` and ``parse``. ``parse`` must not raise for malformed
    fragments; see ``harvester.parsing.parse_fragments``.

    Sources whose listing pages only carry lightweight identifiers set
    ``needs_hydration`` and implement ``hydrate_batch``; the crawl loop then
    hydrates new records in fixed-size batches.
    """

    name: str
    page_size: int = 20
    categories: list[str] = []
    needs_hydration: bool = False

    @abstractmethod
    async def fetch_page(
        self,
        client: ResilientHttpClient,
        category: str,
        cursor: CrawlCursor,
    ) -> RawPage:
        ...

    @abstractmethod
    def parse(self, raw: RawPage, context: ParseContext) -> list[ListingRecord]:
        ...

    async def hydrate_batch(
        self,
        client: ResilientHttpClient,
        records: list[ListingRecord],
    ) -> list[ListingRecord]:
        return records


class DetailListingSource(ABC):
    """A source crawled by fanning out over an index (e.g. a sitemap).

    ``discover`` extracts item URLs from the index response; ``fetch_item``
    fetches and parses one detail page, returning ``None`` when the page holds
    no listing.
    """

    name: str
    index_url: str
    categories: list[str] = []

    @abstractmethod
    def discover(self, index: httpx.Response) -> list[str]:
        ...

    @abstractmethod
    async def fetch_item(self, client: ResilientHttpClient, url: str) -> ListingRecord | None:
        ...


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SessionProgress:
    status: SessionStatus = SessionStatus.RUNNING
    pages_scraped: int = 0
    items_found: int = 0
    items_saved: int = 0
    cursor: CrawlCursor | None = None
    last_error: str | None = None


@dataclass
class CrawlSession:
    id: int
    source: str
    category: str
    status: SessionStatus
    started_at: datetime
    updated_at: datetime
    pages_scraped: int = 0
    items_found: int = 0
    items_saved: int = 0
    cursor: CrawlCursor | None = None
    last_error: str | None = None


class ListingStore(Protocol):
    """Durable, idempotent listing storage plus crawl-session bookkeeping."""

    def upsert(self, records: list[ListingRecord]) -> int: ...

    def get_listings(self, filters: ListingFilters) -> list[ListingRecord]: ...

    def create_session(self, source: str, category: str) -> int: ...

    def update_session(self, session_id: int, progress: SessionProgress) -> None: ...

    def get_last_session(self, source: str, category: str) -> CrawlSession | None: ...


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TerminationReason(str, Enum):
    PAGE_LIMIT = "page_limit"
    TOTAL_REACHED = "total_reached"
    NO_MORE_PAGES = "no_more_pages"
    EMPTY_STREAK = "empty_streak"
    FAILURE_STREAK = "failure_streak"


@dataclass
class CrawlResult:
    """Outcome of one crawl run. Partial runs still report what they harvested."""

    source: str
    category: str
    pages_scraped: int = 0
    items_found: int = 0
    items_saved: int = 0
    duplicates_skipped: int = 0
    failed_pages: list[int] = field(default_factory=list)
    last_error: str | None = None
    termination: TerminationReason | None = None
    cursor: CrawlCursor = field(default_factory=CrawlCursor)
    session_id: int | None = None

    @property
    def completed(self) -> bool:
        return self.termination in (
            TerminationReason.PAGE_LIMIT,
            TerminationReason.TOTAL_REACHED,
            TerminationReason.NO_MORE_PAGES,
        )
