"""Per-source scraper metrics.

One ``ScraperMetrics`` record per source name, created lazily on first
reference and kept for the life of the process. Recording operations are the
only way to mutate a record; ``health_status`` is recomputed from the counters
on every request/error recording and is never set directly.

When a scraper runs in a different OS process its calls never reach this
collector, so ``refresh_from_activity_log`` re-derives the live view (current
category/page, request rate, latency, recent errors, last activity) from the
shared activity log.

Recording is not guarded by locks: the harvester runs one event loop per
process and every recording call completes without yielding.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from harvester.monitoring.activity_log import ActivityLog, ActivityStatus, ActivityType
from harvester.monitoring.health import (
    DEFAULT_UNHEALTHY_STREAK,
    HealthStatus,
    ScraperStatus,
    calculate_health_status,
)

logger = logging.getLogger(__name__)

_RPM_WINDOW_SECONDS = 60.0
_LATENCY_WINDOW = 100
_RECONCILE_WINDOW = 20


@dataclass
class ScraperMetrics:
    """Mutable metrics for a single scraper source."""

    source: str
    status: ScraperStatus = ScraperStatus.IDLE
    health_status: HealthStatus = HealthStatus.UNKNOWN

    start_time: datetime | None = None
    last_activity_time: datetime | None = None

    current_category: str = ""
    current_page: int = 0
    total_pages_scraped: int = 0

    items_found: int = 0
    items_saved: int = 0
    duplicates_skipped: int = 0

    total_errors: int = 0
    consecutive_errors: int = 0
    last_error: str | None = None
    last_error_time: datetime | None = None

    requests_total: int = 0
    requests_per_minute: int = 0
    average_response_time_ms: float = 0.0

    total_items_in_database: int = 0


@dataclass
class AggregatedMetrics:
    """Aggregated view across all tracked sources."""

    timestamp: datetime
    total_scrapers: int
    active_scrapers: int
    healthy_scrapers: int
    degraded_scrapers: int
    unhealthy_scrapers: int
    total_items_found: int
    total_items_saved: int
    total_errors: int
    total_requests_per_minute: int
    scrapers: dict[str, ScraperMetrics] = field(default_factory=dict)


@dataclass
class SourceHealth:
    source: str
    status: ScraperStatus
    health_status: HealthStatus
    last_activity_time: datetime | None
    error: str | None = None


@dataclass
class HealthCheckResult:
    healthy: bool
    timestamp: datetime
    scrapers: list[SourceHealth]
    summary: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricsCollector:
    """Process-wide metrics keyed by source name.

    Parameters
    ----------
    activity_log:
        Shared activity log used to reconcile sources running in other
        processes. Optional; without it reconciliation is a no-op.
    unhealthy_streak:
        Consecutive errors that flip a source to unhealthy.
    tracked_sources:
        Sources to reconcile from the activity log when aggregating.
    now:
        Clock returning an aware datetime (injectable for tests).
    """

    def __init__(
        self,
        activity_log: ActivityLog | None = None,
        *,
        unhealthy_streak: int = DEFAULT_UNHEALTHY_STREAK,
        tracked_sources: list[str] | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._activity_log = activity_log
        self._unhealthy_streak = unhealthy_streak
        self._tracked_sources = list(tracked_sources or [])
        self._now = now

        self._metrics: dict[str, ScraperMetrics] = {}
        self._request_times: dict[str, deque[float]] = {}
        self._latencies: dict[str, deque[float]] = {}

        for source in self._tracked_sources:
            self._get_or_create(source)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_start(self, source: str) -> None:
        """Mark the source as running and reset its per-run counters."""
        metrics = self._get_or_create(source)
        now = self._now()
        metrics.status = ScraperStatus.RUNNING
        metrics.start_time = now
        metrics.last_activity_time = now
        metrics.total_errors = 0
        metrics.consecutive_errors = 0
        metrics.total_pages_scraped = 0
        metrics.items_found = 0
        metrics.items_saved = 0
        metrics.duplicates_skipped = 0
        metrics.requests_total = 0
        metrics.last_error = None
        metrics.last_error_time = None
        metrics.health_status = HealthStatus.UNKNOWN
        self._request_times[source].clear()
        self._latencies[source].clear()
        logger.info("Scraper started: %s", source, extra={"source": source})

    def record_stop(self, source: str, completed: bool = True) -> None:
        metrics = self._get_or_create(source)
        metrics.status = ScraperStatus.COMPLETED if completed else ScraperStatus.IDLE
        metrics.last_activity_time = self._now()
        logger.info("Scraper stopped: %s (completed=%s)", source, completed, extra={"source": source})

    def record_page_scraped(self, source: str, category: str, page: int) -> None:
        metrics = self._get_or_create(source)
        metrics.current_category = category
        metrics.current_page = page
        metrics.total_pages_scraped += 1
        metrics.last_activity_time = self._now()

    def record_items(self, source: str, found: int, saved: int, duplicates: int = 0) -> None:
        metrics = self._get_or_create(source)
        metrics.items_found += found
        metrics.items_saved += saved
        metrics.duplicates_skipped += duplicates
        metrics.last_activity_time = self._now()

    def record_request(self, source: str, latency_ms: float, success: bool) -> None:
        """Record one logical request outcome (after the client's retries)."""
        metrics = self._get_or_create(source)
        metrics.requests_total += 1

        self._request_times[source].append(time.monotonic())
        self._trim_request_window(source)

        latencies = self._latencies[source]
        latencies.append(latency_ms)
        metrics.average_response_time_ms = round(sum(latencies) / len(latencies), 1)

        if success:
            metrics.consecutive_errors = 0
        else:
            metrics.total_errors += 1
            metrics.consecutive_errors += 1

        self._reclassify(metrics)
        metrics.last_activity_time = self._now()

    def record_error(self, source: str, message: str) -> None:
        metrics = self._get_or_create(source)
        metrics.total_errors += 1
        metrics.consecutive_errors += 1
        self._reclassify(metrics)
        self.note_error(source, message)

    def note_error(self, source: str, message: str) -> None:
        """Set the last error without counting a new failure.

        For failures already counted through ``record_request``.
        """
        metrics = self._get_or_create(source)
        now = self._now()
        metrics.last_error = message
        metrics.last_error_time = now
        metrics.last_activity_time = now
        logger.warning(
            "Scraper error recorded: %s (consecutive=%d)",
            message,
            metrics.consecutive_errors,
            extra={"source": source, "error_reason": message},
        )

    def _trim_request_window(self, source: str) -> None:
        # Sources without in-process requests keep the rate derived from the activity log
        metrics = self._metrics.get(source)
        times = self._request_times.get(source)
        if metrics is None or not times:
            return
        stamp = time.monotonic()
        while times and stamp - times[0] > _RPM_WINDOW_SECONDS:
            times.popleft()
        metrics.requests_per_minute = len(times)

    def update_database_count(self, source: str, count: int) -> None:
        self._get_or_create(source).total_items_in_database = count

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_metrics(self, source: str) -> ScraperMetrics | None:
        """Return a copy of the source's metrics, or None if never referenced."""
        self._trim_request_window(source)
        metrics = self._metrics.get(source)
        return replace(metrics) if metrics is not None else None

    def sources(self) -> list[str]:
        return list(self._metrics)

    def get_all_metrics(self) -> AggregatedMetrics:
        """Aggregate every source, refreshing out-of-process sources first."""
        for source in self._tracked_sources:
            if self._metrics[source].status != ScraperStatus.RUNNING:
                self.refresh_from_activity_log(source)
        for source in self._metrics:
            self._trim_request_window(source)

        snapshot = {source: replace(m) for source, m in self._metrics.items()}
        values = list(snapshot.values())

        return AggregatedMetrics(
            timestamp=self._now(),
            total_scrapers=len(values),
            active_scrapers=sum(1 for m in values if m.status == ScraperStatus.RUNNING),
            healthy_scrapers=sum(1 for m in values if m.health_status == HealthStatus.HEALTHY),
            degraded_scrapers=sum(1 for m in values if m.health_status == HealthStatus.DEGRADED),
            unhealthy_scrapers=sum(1 for m in values if m.health_status == HealthStatus.UNHEALTHY),
            total_items_found=sum(m.items_found for m in values),
            total_items_saved=sum(m.items_saved for m in values),
            total_errors=sum(m.total_errors for m in values),
            total_requests_per_minute=sum(m.requests_per_minute for m in values),
            scrapers=snapshot,
        )

    def get_health_check(self) -> HealthCheckResult:
        scrapers = [
            SourceHealth(
                source=m.source,
                status=m.status,
                health_status=m.health_status,
                last_activity_time=m.last_activity_time,
                error=m.last_error,
            )
            for m in self._metrics.values()
        ]
        unhealthy = [s for s in scrapers if s.health_status == HealthStatus.UNHEALTHY]
        has_running = any(s.status == ScraperStatus.RUNNING for s in scrapers)

        if not scrapers:
            summary = "No scrapers registered"
        elif unhealthy:
            summary = f"{len(unhealthy)} scraper(s) unhealthy"
        elif has_running:
            summary = "All scrapers healthy and running"
        else:
            summary = "All scrapers healthy (none running)"

        return HealthCheckResult(
            healthy=not unhealthy,
            timestamp=self._now(),
            scrapers=scrapers,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Cross-process reconciliation
    # ------------------------------------------------------------------

    def refresh_from_activity_log(self, source: str) -> bool:
        """Re-derive the live view of ``source`` from the shared activity log.

        Returns True when the log had entries for the source.
        """
        if self._activity_log is None:
            return False

        activities = self._activity_log.query(source=source, limit=_RECONCILE_WINDOW)
        if not activities:
            return False

        metrics = self._get_or_create(source)

        parsing = next((a for a in activities if a.type == ActivityType.PARSING), None)
        if parsing is not None:
            metrics.current_category = parsing.details.get("category", "") or ""
            metrics.current_page = int(parsing.details.get("page", 0) or 0)

        newest = activities[0].timestamp
        if metrics.last_activity_time is None or newest > metrics.last_activity_time:
            metrics.last_activity_time = newest

        cutoff = self._now() - timedelta(seconds=_RPM_WINDOW_SECONDS)
        requests = [a for a in activities if a.type == ActivityType.HTTP_REQUEST]
        recent_requests = [a for a in requests if a.timestamp > cutoff]
        metrics.requests_per_minute = len(recent_requests)

        latencies = [a.details["latency_ms"] for a in requests if a.details.get("latency_ms")]
        if latencies:
            metrics.average_response_time_ms = round(sum(latencies) / len(latencies), 1)

        errors = [a for a in activities if a.status == ActivityStatus.ERROR]
        metrics.total_errors = max(metrics.total_errors, len(errors))
        if errors:
            metrics.last_error = errors[0].message
            metrics.last_error_time = errors[0].timestamp

        streak = 0
        for activity in activities:
            if activity.status == ActivityStatus.ERROR:
                streak += 1
            elif activity.status == ActivityStatus.SUCCESS:
                break
        metrics.consecutive_errors = streak

        metrics.health_status = calculate_health_status(
            len(recent_requests), len(errors), streak, self._unhealthy_streak
        )
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reclassify(self, metrics: ScraperMetrics) -> None:
        metrics.health_status = calculate_health_status(
            metrics.requests_total,
            metrics.total_errors,
            metrics.consecutive_errors,
            self._unhealthy_streak,
        )

    def _get_or_create(self, source: str) -> ScraperMetrics:
        metrics = self._metrics.get(source)
        if metrics is None:
            metrics = ScraperMetrics(source=source)
            self._metrics[source] = metrics
            self._request_times[source] = deque()
            self._latencies[source] = deque(maxlen=_LATENCY_WINDOW)
            logger.debug("Metrics initialized for scraper: %s", source)
        return metrics

    def clear(self) -> None:
        self._metrics.clear()
        self._request_times.clear()
        self._latencies.clear()
        for source in self._tracked_sources:
            self._get_or_create(source)
