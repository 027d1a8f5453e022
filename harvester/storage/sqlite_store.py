"""SQLite-backed listing store.

Listings are keyed by (source, item_id) and written with an idempotent
``INSERT ... ON CONFLICT DO UPDATE``, so re-running a crawl never duplicates
stored records. Crawl sessions record progress and the resume cursor. One
connection per operation, WAL journal so the API process can read while a
scraper process writes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path

from harvester.crawl.types import (
    CrawlCursor,
    CrawlSession,
    ListingFilters,
    ListingRecord,
    SessionProgress,
    SessionStatus,
)
from harvester.middleware.error_handler import PersistenceError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS listings (
    source TEXT NOT NULL,
    item_id TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT '',
    url TEXT,
    payload_json TEXT NOT NULL,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    PRIMARY KEY (source, item_id)
);
CREATE INDEX IF NOT EXISTS idx_listings_source_category ON listings(source, category);
CREATE INDEX IF NOT EXISTS idx_listings_last_seen ON listings(last_seen_at DESC);

CREATE TABLE IF NOT EXISTS crawl_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    category TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pages_scraped INTEGER NOT NULL DEFAULT 0,
    items_found INTEGER NOT NULL DEFAULT 0,
    items_saved INTEGER NOT NULL DEFAULT 0,
    cursor_json TEXT,
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_source_category ON crawl_sessions(source, category, id DESC);
"""

_UPSERT = """
INSERT INTO listings (source, item_id, category, url, payload_json, first_seen_at, last_seen_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(source, item_id) DO UPDATE SET
    category = excluded.category,
    url = excluded.url,
    payload_json = excluded.payload_json,
    last_seen_at = excluded.last_seen_at
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteListingStore:
    """Listing store and crawl-session bookkeeping in one SQLite file.

    Every ``sqlite3.Error`` surfaces as ``PersistenceError``.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._connect()) as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(_SCHEMA)
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to initialize store: {exc}", db_path=db_path) from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def upsert(self, records: list[ListingRecord]) -> int:
        """Insert or update ``records``; return how many rows were written."""
        if not records:
            return 0
        now = _now_iso()
        rows = [
            (
                r.source,
                r.item_id,
                r.category,
                r.url,
                json.dumps(r.payload, default=str, ensure_ascii=False),
                now,
                now,
            )
            for r in records
        ]
        try:
            with closing(self._connect()) as conn:
                conn.executemany(_UPSERT, rows)
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Upsert of {len(rows)} listings failed: {exc}") from exc
        logger.debug("Upserted %d listings", len(rows))
        return len(rows)

    def get_listings(self, filters: ListingFilters) -> list[ListingRecord]:
        clauses: list[str] = []
        params: list = []
        if filters.source:
            clauses.append("source = ?")
            params.append(filters.source)
        if filters.category:
            clauses.append("category = ?")
            params.append(filters.category)
        if filters.since is not None:
            clauses.append("last_seen_at >= ?")
            params.append(filters.since.astimezone(timezone.utc).isoformat())
        where = " WHERE " + " AND ".join(clauses) if clauses else ""

        sql = f"SELECT * FROM listings{where} ORDER BY last_seen_at DESC, item_id LIMIT ? OFFSET ?"
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(sql, (*params, filters.limit, filters.offset)).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Listing query failed: {exc}") from exc

        return [
            ListingRecord(
                item_id=row["item_id"],
                source=row["source"],
                category=row["category"],
                url=row["url"],
                payload=json.loads(row["payload_json"]),
            )
            for row in rows
        ]

    def count(self, source: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM listings"
        params: tuple = ()
        if source:
            sql += " WHERE source = ?"
            params = (source,)
        try:
            with closing(self._connect()) as conn:
                return int(conn.execute(sql, params).fetchone()[0])
        except sqlite3.Error as exc:
            raise PersistenceError(f"Count failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Crawl sessions
    # ------------------------------------------------------------------

    def create_session(self, source: str, category: str) -> int:
        now = _now_iso()
        try:
            with closing(self._connect()) as conn:
                cur = conn.execute(
                    "INSERT INTO crawl_sessions (source, category, status, started_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (source, category, SessionStatus.RUNNING.value, now, now),
                )
                conn.commit()
                return int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to create crawl session: {exc}") from exc

    def update_session(self, session_id: int, progress: SessionProgress) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "UPDATE crawl_sessions SET status = ?, updated_at = ?, pages_scraped = ?, "
                    "items_found = ?, items_saved = ?, cursor_json = ?, last_error = ? WHERE id = ?",
                    (
                        progress.status.value,
                        _now_iso(),
                        progress.pages_scraped,
                        progress.items_found,
                        progress.items_saved,
                        progress.cursor.to_json() if progress.cursor else None,
                        progress.last_error,
                        session_id,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to update crawl session {session_id}: {exc}") from exc

    def get_last_session(self, source: str, category: str) -> CrawlSession | None:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT * FROM crawl_sessions WHERE source = ? AND category = ? "
                    "ORDER BY id DESC LIMIT 1",
                    (source, category),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read crawl session: {exc}") from exc

        if row is None:
            return None
        return CrawlSession(
            id=row["id"],
            source=row["source"],
            category=row["category"],
            status=SessionStatus(row["status"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            pages_scraped=row["pages_scraped"],
            items_found=row["items_found"],
            items_saved=row["items_saved"],
            cursor=CrawlCursor.from_json(row["cursor_json"]) if row["cursor_json"] else None,
            last_error=row["last_error"],
        )
