"""Watchdog control loop.

Polls the metrics collector and the process supervisor on a fixed interval
(the first check runs immediately) and classifies each tracked source. A
running source is flagged when any of these holds:

- no activity for longer than ``max_idle_time_ms`` (stuck)
- ``consecutive_errors >= max_consecutive_errors``
- ``health_status == unhealthy``

Flagged sources are restarted (stop, wait ``auto_restart_delay_ms``, start)
when ``auto_restart`` is on; otherwise a restart is only recommended in the
log. Only the latest ``WatchdogCheckResult`` is kept.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel, Field

from harvester.monitoring.health import HealthStatus
from harvester.monitoring.metrics import MetricsCollector
from harvester.supervision.process_supervisor import ProcessStatus, SupervisorResult

logger = logging.getLogger(__name__)


class SupervisionClient(Protocol):
    """What the watchdog needs from process supervision."""

    def status(self, source: str) -> ProcessStatus: ...

    async def stop(self, source: str) -> SupervisorResult: ...

    async def start(self, source: str) -> SupervisorResult: ...


class WatchdogConfig(BaseModel):
    check_interval_ms: int = Field(default=60_000, ge=100)
    max_idle_time_ms: int = Field(default=300_000, ge=1000)
    max_consecutive_errors: int = Field(default=10, ge=1)
    auto_restart: bool = False
    auto_restart_delay_ms: int = Field(default=30_000, ge=0)


class WatchdogConfigUpdate(BaseModel):
    """Partial update accepted by ``Watchdog.update_config``."""

    check_interval_ms: int | None = Field(default=None, ge=100)
    max_idle_time_ms: int | None = Field(default=None, ge=1000)
    max_consecutive_errors: int | None = Field(default=None, ge=1)
    auto_restart: bool | None = None
    auto_restart_delay_ms: int | None = Field(default=None, ge=0)


@dataclass
class SourceCheck:
    source: str
    healthy: bool
    issue: str | None = None
    action: str | None = None  # None, "restart" or "recommend_restart"


@dataclass
class WatchdogCheckResult:
    timestamp: datetime
    healthy: bool
    sources: list[SourceCheck] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Watchdog:
    """Periodic health check with optional auto-restart.

    Parameters
    ----------
    metrics:
        Collector read (and reconciled from the activity log) on every check.
    supervisor:
        Process supervision collaborator used for status, stop and start.
    sources:
        Source names to check.
    config:
        Initial configuration; hot-reloadable via ``update_config``.
    now, sleep:
        Clock and sleep coroutine, injectable for tests.
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        supervisor: SupervisionClient,
        sources: list[str],
        config: WatchdogConfig | None = None,
        *,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._metrics = metrics
        self._supervisor = supervisor
        self._sources = list(sources)
        self._config = config or WatchdogConfig()
        self._now = now
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._last_result: WatchdogCheckResult | None = None
        self._wake = asyncio.Event()
        self._stopping = False

    @property
    def config(self) -> WatchdogConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_result(self) -> WatchdogCheckResult | None:
        return self._last_result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            logger.warning("Watchdog already running")
            return
        self._stopping = False
        self._wake.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Watchdog started (interval=%dms, auto_restart=%s)",
            self._config.check_interval_ms,
            self._config.auto_restart,
        )

    async def stop(self) -> None:
        """Stop after the check in progress, if any, has finished."""
        if self._task is None:
            return
        self._stopping = True
        self._wake.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stopping = False
            self._wake.clear()
        logger.info("Watchdog stopped")

    async def update_config(self, update: WatchdogConfigUpdate) -> WatchdogConfig:
        """Apply a partial update; a running loop starts over on the new cadence.

        Only the wait between checks is cut short. A check in progress, including
        a stop/start restart sequence, always runs to completion.
        """
        changes = update.model_dump(exclude_none=True)
        self._config = self._config.model_copy(update=changes)
        logger.info("Watchdog config updated: %s", changes)

        if self.is_running:
            self._wake.set()
        return self._config

    async def _loop(self) -> None:
        while not self._stopping:
            try:
                await self.run_check()
            except Exception:
                logger.exception("Watchdog check failed")
            if self._stopping:
                break
            await self._wait_for_next_check()

    async def _wait_for_next_check(self) -> None:
        sleeper = asyncio.ensure_future(self._sleep(self._config.check_interval_ms / 1000))
        woken = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({sleeper, woken}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            woken.cancel()
        self._wake.clear()

    # ------------------------------------------------------------------
    # Checking
    # ------------------------------------------------------------------

    async def run_check(self) -> WatchdogCheckResult:
        """Run one check over every tracked source and keep the result."""
        checks = [await self._check_source(source) for source in self._sources]
        result = WatchdogCheckResult(
            timestamp=self._now(),
            healthy=all(check.healthy for check in checks),
            sources=checks,
        )
        self._last_result = result

        if not result.healthy:
            flagged = [c.source for c in checks if not c.healthy]
            logger.warning("Watchdog found issues with: %s", ", ".join(flagged))
        return result

    async def _check_source(self, source: str) -> SourceCheck:
        status = self._supervisor.status(source)
        if not status.is_running:
            return SourceCheck(source=source, healthy=True)

        self._metrics.refresh_from_activity_log(source)
        metrics = self._metrics.get_metrics(source)
        issues: list[str] = []

        last_activity = metrics.last_activity_time if metrics else None
        if status.started_at is not None and (
            last_activity is None or status.started_at > last_activity
        ):
            last_activity = status.started_at

        if last_activity is not None:
            idle_ms = (self._now() - last_activity).total_seconds() * 1000
            if idle_ms > self._config.max_idle_time_ms:
                issues.append(f"Stuck: no activity for {idle_ms / 60_000:.1f} minutes")

        if metrics is not None:
            if metrics.consecutive_errors >= self._config.max_consecutive_errors:
                issues.append(f"Too many errors: {metrics.consecutive_errors} consecutive")
            if metrics.health_status == HealthStatus.UNHEALTHY:
                issues.append("Marked unhealthy")

        if not issues:
            return SourceCheck(source=source, healthy=True)

        issue = "; ".join(issues)
        if self._config.auto_restart:
            await self._restart(source, issue)
            action = "restart"
        else:
            logger.warning(
                "Watchdog recommends restarting %s: %s",
                source,
                issue,
                extra={"source": source, "error_reason": issue},
            )
            action = "recommend_restart"
        return SourceCheck(source=source, healthy=False, issue=issue, action=action)

    async def _restart(self, source: str, reason: str) -> None:
        logger.warning(
            "Watchdog restarting %s: %s",
            source,
            reason,
            extra={"source": source, "error_reason": reason},
        )
        stopped = await self._supervisor.stop(source)
        if not stopped.success:
            logger.warning("Stop before restart failed for %s: %s", source, stopped.message)

        await self._sleep(self._config.auto_restart_delay_ms / 1000)

        started = await self._supervisor.start(source)
        if started.success:
            logger.info("Watchdog restarted %s (pid %s)", source, started.process_id)
        else:
            logger.error("Watchdog failed to restart %s: %s", source, started.message)

    def get_status(self) -> dict:
        result = self._last_result
        return {
            "running": self.is_running,
            "config": self._config.model_dump(),
            "sources": list(self._sources),
            "last_check": None
            if result is None
            else {
                "timestamp": result.timestamp.isoformat(),
                "healthy": result.healthy,
                "sources": [vars(check) for check in result.sources],
            },
        }
