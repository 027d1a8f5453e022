"""Shared, append-only activity log.

Every outbound request, page parse, store write and error is appended here.
The log lives in a SQLite file opened in WAL mode so that separate scraper
processes can all write to it while the API process reads it back; this is
how the metrics collector reconstructs the live state of a scraper running in
another OS process.

Retention is bounded: once the table grows past ``max_entries`` the oldest
rows are evicted. Writing is advisory: a failed insert is logged and never
propagates to the crawl that emitted the event.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    """Kinds of activity a scraper can emit."""

    HTTP_REQUEST = "http_request"
    PARSING = "parsing"
    DATABASE = "database"
    ERROR = "error"
    PROXY = "proxy"


class ActivityStatus(str, Enum):
    """Outcome attached to an activity."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    RETRY = "retry"


@dataclass
class Activity:
    """A single activity log entry."""

    id: str
    timestamp: datetime
    source: str
    type: ActivityType
    status: ActivityStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    activity_id TEXT NOT NULL UNIQUE,
    timestamp TEXT NOT NULL,
    source TEXT NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT NOT NULL,
    details_json TEXT
);
CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON activities(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_activities_source_type ON activities(source, type);
CREATE INDEX IF NOT EXISTS idx_activities_source_status ON activities(source, status);
"""


class ActivityLog:
    """SQLite-backed activity log shared by all harvester processes.

    Parameters
    ----------
    db_path:
        Path of the shared SQLite file. Parent directories are created.
    max_entries:
        Retention cap; the oldest rows are deleted once it is exceeded.
    """

    def __init__(self, db_path: str, max_entries: int = 1000) -> None:
        self._db_path = db_path
        self._max_entries = max_entries

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def log(
        self,
        source: str,
        type: ActivityType | str,
        status: ActivityStatus | str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> Activity:
        """Append an activity and mirror it to the standard logger."""
        activity = Activity(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            source=source,
            type=ActivityType(type),
            status=ActivityStatus(status),
            message=message,
            details={k: v for k, v in (details or {}).items() if v is not None},
        )

        try:
            self._save(activity)
        except sqlite3.Error as exc:
            logger.warning(
                "Failed to save activity (non-critical): %s",
                exc,
                extra={"source": source},
            )

        if activity.status == ActivityStatus.ERROR:
            logger.error(message, extra={"source": source})
        elif activity.status == ActivityStatus.WARNING:
            logger.warning(message, extra={"source": source})
        else:
            logger.debug(message, extra={"source": source})

        return activity

    def _save(self, activity: Activity) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "INSERT INTO activities "
                "(activity_id, timestamp, source, type, status, message, details_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    activity.id,
                    activity.timestamp.isoformat(),
                    activity.source,
                    activity.type.value,
                    activity.status.value,
                    activity.message,
                    json.dumps(activity.details, default=str),
                ),
            )
            # Evict the oldest rows beyond the retention cap
            conn.execute(
                "DELETE FROM activities WHERE id IN ("
                " SELECT id FROM activities ORDER BY id DESC LIMIT -1 OFFSET ?"
                ")",
                (self._max_entries,),
            )
            conn.commit()

    # Convenience emitters -------------------------------------------------

    def log_http_request(
        self,
        source: str,
        url: str,
        status: ActivityStatus,
        *,
        method: str = "GET",
        status_code: int | None = None,
        latency_ms: float | None = None,
        attempt: int | None = None,
        proxy_host: str | None = None,
        error: str | None = None,
    ) -> Activity:
        if error:
            message = f"HTTP {method} {url} failed (attempt {attempt}): {error}"
        else:
            message = f"HTTP {method} {url} - {status_code} ({latency_ms or 0:.0f}ms)"
        return self.log(
            source,
            ActivityType.HTTP_REQUEST,
            status,
            message,
            {
                "url": url,
                "method": method,
                "status_code": status_code,
                "latency_ms": round(latency_ms, 1) if latency_ms is not None else None,
                "attempt": attempt,
                "proxy_used": proxy_host is not None,
                "proxy_host": proxy_host,
                "error": error,
            },
        )

    def log_parsing(
        self,
        source: str,
        category: str,
        page: int,
        items_found: int,
        *,
        status: ActivityStatus = ActivityStatus.SUCCESS,
        error: str | None = None,
    ) -> Activity:
        if error:
            message = f"Parsing issue for {category} page {page}: {error}"
        else:
            message = f"Parsed {category} page {page} - found {items_found} items"
        return self.log(
            source,
            ActivityType.PARSING,
            status,
            message,
            {"category": category, "page": page, "items_found": items_found, "error": error},
        )

    def log_database(
        self,
        source: str,
        operation: str,
        items_saved: int,
        error: str | None = None,
    ) -> Activity:
        status = ActivityStatus.ERROR if error else ActivityStatus.SUCCESS
        message = (
            f"Database {operation} failed: {error}"
            if error
            else f"Database {operation} - saved {items_saved} items"
        )
        return self.log(
            source,
            ActivityType.DATABASE,
            status,
            message,
            {"operation": operation, "items_saved": items_saved, "error": error},
        )

    def log_error(
        self,
        source: str,
        error: str,
        details: dict[str, Any] | None = None,
        *,
        status: ActivityStatus = ActivityStatus.ERROR,
    ) -> Activity:
        return self.log(
            source,
            ActivityType.ERROR,
            status,
            f"Error in {source}: {error}",
            {**(details or {}), "error": error},
        )

    def log_proxy_event(
        self,
        source: str,
        event: str,
        proxy_host: str,
        success: bool,
        error: str | None = None,
    ) -> Activity:
        if success:
            message = f"Proxy event: {event} via {proxy_host}"
        else:
            message = f"Proxy event failed: {event} via {proxy_host} - {error}"
        return self.log(
            source,
            ActivityType.PROXY,
            ActivityStatus.SUCCESS if success else ActivityStatus.ERROR,
            message,
            {"proxy_host": proxy_host, "operation": event, "error": error},
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def query(
        self,
        *,
        source: str | None = None,
        type: ActivityType | str | None = None,
        status: ActivityStatus | str | None = None,
        since: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Activity]:
        """Return matching activities ordered newest-first."""
        where, params = self._where(source, type, status, since)
        sql = (
            f"SELECT * FROM activities{where} ORDER BY id DESC LIMIT ? OFFSET ?"
        )
        with closing(self._connect()) as conn:
            rows = conn.execute(sql, (*params, limit, offset)).fetchall()
        return [self._row_to_activity(row) for row in rows]

    def count(
        self,
        *,
        source: str | None = None,
        type: ActivityType | str | None = None,
        status: ActivityStatus | str | None = None,
    ) -> int:
        where, params = self._where(source, type, status, None)
        with closing(self._connect()) as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM activities{where}", params).fetchone()
        return int(row[0])

    def clear(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("DELETE FROM activities")
            conn.commit()
        logger.info("All activities cleared")

    @staticmethod
    def _where(source, type, status, since) -> tuple[str, list]:
        clauses: list[str] = []
        params: list = []
        if source:
            clauses.append("source = ?")
            params.append(source)
        if type:
            clauses.append("type = ?")
            params.append(ActivityType(type).value)
        if status:
            clauses.append("status = ?")
            params.append(ActivityStatus(status).value)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since.astimezone(timezone.utc).isoformat())
        return (" WHERE " + " AND ".join(clauses) if clauses else ""), params

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        return Activity(
            id=row["activity_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            source=row["source"],
            type=ActivityType(row["type"]),
            status=ActivityStatus(row["status"]),
            message=row["message"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
        )
