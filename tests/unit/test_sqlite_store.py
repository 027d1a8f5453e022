"""Unit tests for the SQLite listing store."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from harvester.crawl.types import (
    CrawlCursor,
    ListingFilters,
    ListingRecord,
    SessionProgress,
    SessionStatus,
)
from harvester.middleware.error_handler import PersistenceError
from harvester.storage.sqlite_store import SqliteListingStore


@pytest.fixture
def sqlite_store(tmp_path) -> SqliteListingStore:
    return SqliteListingStore(str(tmp_path / "nested" / "listings.db"))


def _record(item_id: str, source: str = "jobs", category: str = "sales", **payload) -> ListingRecord:
    return ListingRecord(item_id=item_id, source=source, category=category, payload=payload)


class TestListings:
    def test_upsert_is_idempotent(self, sqlite_store):
        assert sqlite_store.upsert([_record("1"), _record("2")]) == 2
        sqlite_store.upsert([_record("1"), _record("2")])
        assert sqlite_store.count() == 2

    def test_upsert_updates_payload(self, sqlite_store):
        sqlite_store.upsert([_record("1", title="old")])
        sqlite_store.upsert([_record("1", title="new")])

        [stored] = sqlite_store.get_listings(ListingFilters(source="jobs"))
        assert stored.payload == {"title": "new"}

    def test_same_id_in_different_sources(self, sqlite_store):
        sqlite_store.upsert([_record("1", source="jobs"), _record("1", source="homes")])
        assert sqlite_store.count() == 2
        assert sqlite_store.count("homes") == 1

    def test_empty_upsert(self, sqlite_store):
        assert sqlite_store.upsert([]) == 0

    def test_filters(self, sqlite_store):
        sqlite_store.upsert(
            [_record("1", category="sales"), _record("2", category="support"), _record("3", category="sales")]
        )

        sales = sqlite_store.get_listings(ListingFilters(source="jobs", category="sales"))
        assert sorted(r.item_id for r in sales) == ["1", "3"]

        page = sqlite_store.get_listings(ListingFilters(limit=1, offset=1))
        assert len(page) == 1

    def test_unicode_payload(self, sqlite_store):
        sqlite_store.upsert([_record("1", title="דירה בתל אביב")])
        [stored] = sqlite_store.get_listings(ListingFilters())
        assert stored.payload["title"] == "דירה בתל אביב"

    def test_sqlite_errors_become_persistence_errors(self, sqlite_store):
        with patch.object(sqlite_store, "_connect", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(PersistenceError):
                sqlite_store.upsert([_record("1")])
            with pytest.raises(PersistenceError):
                sqlite_store.get_listings(ListingFilters())


class TestSessions:
    def test_create_and_read(self, sqlite_store):
        session_id = sqlite_store.create_session("jobs", "sales")

        session = sqlite_store.get_last_session("jobs", "sales")

        assert session.id == session_id
        assert session.status == SessionStatus.RUNNING
        assert session.cursor is None

    def test_update_keeps_cursor(self, sqlite_store):
        session_id = sqlite_store.create_session("jobs", "sales")
        sqlite_store.update_session(
            session_id,
            SessionProgress(
                status=SessionStatus.FAILED,
                pages_scraped=4,
                items_found=80,
                items_saved=75,
                cursor=CrawlCursor(page=5, offset=80, token="abc"),
                last_error="Page 4 failed",
            ),
        )

        session = sqlite_store.get_last_session("jobs", "sales")
        assert session.status == SessionStatus.FAILED
        assert session.pages_scraped == 4
        assert session.items_saved == 75
        assert session.cursor == CrawlCursor(page=5, offset=80, token="abc")
        assert session.last_error == "Page 4 failed"

    def test_last_session_is_newest(self, sqlite_store):
        sqlite_store.create_session("jobs", "sales")
        newest = sqlite_store.create_session("jobs", "sales")
        sqlite_store.create_session("jobs", "support")

        assert sqlite_store.get_last_session("jobs", "sales").id == newest
        assert sqlite_store.get_last_session("homes", "sales") is None
