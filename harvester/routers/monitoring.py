"""Read-only monitoring endpoints plus watchdog configuration.

- GET /health: service liveness with proxy and watchdog summaries
- GET /metrics: aggregated metrics across sources
- GET /metrics/health: 200 when healthy, 503 when any source is unhealthy
- GET /metrics/{source}: metrics for one source
- GET /proxy/status: proxy pool snapshot
- GET /watchdog: watchdog state and latest check
- PATCH /watchdog/config: hot-reload watchdog configuration
- GET /activities: activity log, newest first
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Query, Response

from harvester.middleware.error_handler import SourceNotFoundError
from harvester.models.responses import ApiResponse, to_data
from harvester.monitoring.activity_log import ActivityStatus, ActivityType
from harvester.monitoring.health import ScraperStatus
from harvester.monitoring.watchdog import WatchdogConfigUpdate

if TYPE_CHECKING:
    from harvester.monitoring.activity_log import ActivityLog
    from harvester.monitoring.metrics import MetricsCollector
    from harvester.monitoring.watchdog import Watchdog
    from harvester.proxy.manager import ProxyPoolManager


def create_monitoring_router(
    *,
    metrics: MetricsCollector,
    activity_log: ActivityLog,
    proxy_manager: ProxyPoolManager | None = None,
    watchdog: Watchdog | None = None,
) -> APIRouter:
    """Factory that creates the monitoring router with injected dependencies."""

    router = APIRouter(tags=["monitoring"])

    @router.get("/health")
    async def health() -> dict:
        proxy_status = proxy_manager.get_status() if proxy_manager else None
        return ApiResponse(
            success=True,
            data={
                "status": "ok",
                "proxy": None
                if proxy_status is None
                else {"enabled": proxy_status.enabled, "health": proxy_status.health},
                "watchdog_running": watchdog.is_running if watchdog else False,
            },
        ).model_dump()

    @router.get("/metrics")
    async def all_metrics() -> dict:
        return ApiResponse(success=True, data=to_data(metrics.get_all_metrics())).model_dump()

    @router.get("/metrics/health")
    async def metrics_health(response: Response) -> dict:
        result = metrics.get_health_check()
        if not result.healthy:
            response.status_code = 503
        return ApiResponse(
            success=result.healthy,
            data=to_data(result),
            error=None if result.healthy else result.summary,
        ).model_dump()

    @router.get("/metrics/{source}")
    async def source_metrics(source: str) -> dict:
        current = metrics.get_metrics(source)
        if current is None or current.status != ScraperStatus.RUNNING:
            metrics.refresh_from_activity_log(source)
            current = metrics.get_metrics(source)
        if current is None:
            raise SourceNotFoundError(f"No metrics for source '{source}'", source=source)
        return ApiResponse(success=True, data=to_data(current)).model_dump()

    @router.get("/proxy/status")
    async def proxy_status() -> dict:
        if proxy_manager is None:
            return ApiResponse(success=True, data={"enabled": False, "health": "unknown"}).model_dump()
        return ApiResponse(success=True, data=to_data(proxy_manager.get_status())).model_dump()

    @router.get("/watchdog")
    async def watchdog_status() -> dict:
        if watchdog is None:
            return ApiResponse(success=True, data={"running": False}).model_dump()
        return ApiResponse(success=True, data=watchdog.get_status()).model_dump()

    @router.patch("/watchdog/config")
    async def update_watchdog_config(update: WatchdogConfigUpdate) -> dict:
        if watchdog is None:
            return ApiResponse(success=False, error="Watchdog is not configured").model_dump()
        config = await watchdog.update_config(update)
        return ApiResponse(success=True, data=config.model_dump()).model_dump()

    @router.get("/activities")
    async def activities(
        source: str | None = None,
        type: ActivityType | None = None,
        status: ActivityStatus | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> dict:
        entries = activity_log.query(
            source=source, type=type, status=status, limit=limit, offset=offset
        )
        total = activity_log.count(source=source, type=type, status=status)
        meta: dict[str, Any] = {"total": total, "limit": limit, "offset": offset}
        return ApiResponse(success=True, data=to_data(entries), meta=meta).model_dump()

    return router
