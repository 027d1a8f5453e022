"""Generic paginated JSON API source.

Covers the common shape of listing APIs: ``GET base_url?category=..&page=..&limit=..``
answering ``{"items": [...], "total": N}``. Field names are configurable from
the source policy ``options``.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from harvester.crawl.types import CrawlCursor, ListingRecord, ListingSource, ParseContext, RawPage
from harvester.parsing.fragments import parse_fragments

logger = logging.getLogger(__name__)


def _dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; None when any step is missing."""
    for key in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class JsonApiSource(ListingSource):
    """Page/limit paginated JSON listing API."""

    def __init__(
        self,
        name: str,
        base_url: str,
        categories: list[str] | None = None,
        *,
        page_size: int = 20,
        items_path: str = "items",
        id_field: str = "id",
        url_field: str | None = "url",
        total_path: str | None = "total",
        has_more_path: str | None = None,
        page_param: str = "page",
        size_param: str = "limit",
        category_param: str | None = "category",
        extra_params: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.base_url = base_url
        self.categories = list(categories or [""])
        self.page_size = page_size
        self._items_path = items_path
        self._id_field = id_field
        self._url_field = url_field
        self._total_path = total_path
        self._has_more_path = has_more_path
        self._page_param = page_param
        self._size_param = size_param
        self._category_param = category_param
        self._extra_params = dict(extra_params or {})

    async def fetch_page(self, client, category: str, cursor: CrawlCursor) -> RawPage:
        params: dict[str, Any] = {
            **self._extra_params,
            self._page_param: cursor.page,
            self._size_param: self.page_size,
        }
        if self._category_param and category:
            params[self._category_param] = category

        response = await client.get(self.base_url, params=params)
        data = response.json()

        items = _dig(data, self._items_path) or []
        total = _dig(data, self._total_path) if self._total_path else None
        has_more = _dig(data, self._has_more_path) if self._has_more_path else None
        return RawPage(
            content=items,
            total_count=int(total) if total is not None else None,
            has_more=bool(has_more) if has_more is not None else None,
            item_count=len(items),
        )

    def parse(self, raw: RawPage, context: ParseContext) -> list[ListingRecord]:
        return parse_fragments(raw.content, partial(self._parse_item, context), context)

    def _parse_item(self, context: ParseContext, item: dict) -> ListingRecord:
        item_id = item[self._id_field]
        if item_id in (None, ""):
            raise ValueError(f"empty '{self._id_field}'")
        return ListingRecord(
            item_id=str(item_id),
            source=context.source,
            category=context.category,
            url=item.get(self._url_field) if self._url_field else None,
            payload=item,
        )


def json_api(name: str, categories: list[str] | None = None, **options: Any) -> JsonApiSource:
    """Factory referenced from the source policy file."""
    return JsonApiSource(name, categories=categories, **options)
