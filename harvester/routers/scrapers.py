"""Scraper process control.

- POST /scrapers/{source}/start: spawn a crawl process (409 when already running)
- POST /scrapers/{source}/stop: terminate it
- GET /scrapers/{source}/status: running flag, pid, start time
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from harvester.middleware.error_handler import SourceAlreadyRunningError, SourceNotFoundError
from harvester.models.requests import StartScraperRequest
from harvester.models.responses import ApiResponse, to_data

if TYPE_CHECKING:
    from harvester.sources.registry import SourceRegistry
    from harvester.supervision.process_supervisor import ProcessSupervisor


def create_scrapers_router(
    *,
    supervisor: ProcessSupervisor,
    registry: SourceRegistry,
) -> APIRouter:
    """Factory that creates the scraper control router."""

    router = APIRouter(prefix="/scrapers", tags=["scrapers"])

    def _require_known(source: str) -> None:
        if source not in registry:
            raise SourceNotFoundError(f"Unknown source '{source}'", source=source)

    @router.post("/{source}/start", status_code=202)
    async def start(source: str, body: StartScraperRequest | None = None) -> dict:
        _require_known(source)
        result = await supervisor.start(source, (body or StartScraperRequest()).to_options())
        if not result.success:
            raise SourceAlreadyRunningError(result.message, source=source, pid=result.process_id)
        return ApiResponse(success=True, data=to_data(result)).model_dump()

    @router.post("/{source}/stop")
    async def stop(source: str) -> dict:
        _require_known(source)
        result = await supervisor.stop(source)
        return ApiResponse(
            success=result.success,
            data=to_data(result),
            error=None if result.success else result.message,
        ).model_dump()

    @router.get("/{source}/status")
    async def status(source: str) -> dict:
        _require_known(source)
        return ApiResponse(success=True, data=to_data(supervisor.status(source))).model_dump()

    return router
