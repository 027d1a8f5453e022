"""Per-run deduplication of item identities."""

from __future__ import annotations

from collections.abc import Iterable

from harvester.crawl.types import ListingRecord


class SeenIdSet:
    """Identities already emitted during the current run of one (source, category).

    Grows monotonically and is discarded with the run. The store's upsert is
    the durable idempotence guarantee across runs; this set only saves
    re-persisting items that reappear on later pages.
    """

    def __init__(self, source: str = "", category: str = "") -> None:
        self.source = source
        self.category = category
        self._ids: set[str] = set()

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, item_id: str) -> bool:
        """Add ``item_id``; return True when it was not seen before."""
        if item_id in self._ids:
            return False
        self._ids.add(item_id)
        return True

    def filter_new(self, records: Iterable[ListingRecord]) -> list[ListingRecord]:
        """Return records whose ids are new, marking them seen.

        Duplicates within the same batch are dropped too; the first occurrence wins.
        """
        return [record for record in records if self.add(record.item_id)]

    def filter_new_keys(self, keys: Iterable[str]) -> list[str]:
        return [key for key in keys if self.add(key)]
