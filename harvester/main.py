"""FastAPI application entry point with lifespan management.

Startup: load settings, configure JSON logging, open the shared activity log,
build the metrics collector, proxy pool, source registry, process supervisor
and watchdog, mount routers, start background loops.
Shutdown: stop the watchdog, stop child scraper processes, cancel the proxy
health check loop.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from harvester.config.settings import HarvesterSettings
from harvester.logging_config import configure_logging
from harvester.middleware.error_handler import register_error_handlers
from harvester.monitoring.activity_log import ActivityLog
from harvester.monitoring.metrics import MetricsCollector
from harvester.monitoring.watchdog import Watchdog, WatchdogConfig
from harvester.proxy.manager import ProxyPoolManager
from harvester.routers.monitoring import create_monitoring_router
from harvester.routers.scrapers import create_scrapers_router
from harvester.sources.registry import SourceRegistry
from harvester.supervision.process_supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

# Process-wide handles, populated during lifespan startup
_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings = HarvesterSettings()
    configure_logging(settings.log_level)
    logger.info("Starting harvester API on port %d", settings.port)

    activity_log = ActivityLog(settings.activity_db_path, settings.activity_max_entries)

    registry = SourceRegistry.from_yaml(settings.source_policies_path)
    tracked = sorted(set(registry.names()) | set(settings.tracked_sources))

    metrics = MetricsCollector(
        activity_log,
        unhealthy_streak=settings.unhealthy_consecutive_errors,
        tracked_sources=tracked,
    )

    proxy_manager = ProxyPoolManager(
        rotation_interval=settings.proxy_rotation_interval,
        probe_url=settings.proxy_probe_url,
        probe_timeout_seconds=settings.proxy_probe_timeout_seconds,
        health_check_interval_seconds=settings.proxy_health_check_interval_seconds,
        activity_log=activity_log,
        enabled=settings.proxy_enabled,
    )
    await proxy_manager.initialize(settings.proxy_endpoints)
    health_check_task = asyncio.create_task(proxy_manager.health_check_loop())

    supervisor = ProcessSupervisor(known_sources=tracked)

    watchdog = Watchdog(
        metrics,
        supervisor,
        tracked,
        WatchdogConfig(
            check_interval_ms=settings.watchdog_check_interval_ms,
            max_idle_time_ms=settings.watchdog_max_idle_time_ms,
            max_consecutive_errors=settings.watchdog_max_consecutive_errors,
            auto_restart=settings.watchdog_auto_restart,
            auto_restart_delay_ms=settings.watchdog_auto_restart_delay_ms,
        ),
    )
    if settings.watchdog_enabled:
        watchdog.start()

    # Mount routers
    app.include_router(
        create_monitoring_router(
            metrics=metrics,
            activity_log=activity_log,
            proxy_manager=proxy_manager,
            watchdog=watchdog,
        )
    )
    app.include_router(create_scrapers_router(supervisor=supervisor, registry=registry))

    _state.update({
        "settings": settings,
        "activity_log": activity_log,
        "metrics": metrics,
        "proxy_manager": proxy_manager,
        "supervisor": supervisor,
        "watchdog": watchdog,
        "registry": registry,
    })

    logger.info("Harvester API started (%d tracked sources)", len(tracked))

    yield

    # --- Shutdown ---
    logger.info("Shutting down harvester API")

    await watchdog.stop()
    await supervisor.shutdown()

    health_check_task.cancel()
    try:
        await health_check_task
    except asyncio.CancelledError:
        pass

    _state.clear()
    logger.info("Harvester API shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Listing Harvester",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    return app


app = create_app()
