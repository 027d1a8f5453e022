"""Global error hierarchy and FastAPI exception handlers.

All harvester-specific errors extend HarvesterError. Errors raised by the crawl
engine (network, parse, persistence, proxy) share the same base so that the
API layer can render any of them with a consistent JSON envelope:
{ success, data, error, meta }.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class HarvesterError(Exception):
    """Base error for all harvester-specific errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class ValidationError(HarvesterError):
    """Pydantic / payload validation failures, with field-level details."""

    status_code = 422
    message = "Validation error"


class NetworkError(HarvesterError):
    """Base for outbound request failures."""

    status_code = 502
    message = "Network request failed"


class TransportError(NetworkError):
    """A single attempt failed: connection error, timeout or non-success status.

    Retryable by the HTTP client itself.
    """

    message = "Transport error"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(message, **kwargs)
        self.response_status = status_code


class ExhaustedRetriesError(NetworkError):
    """Raised after the retry budget is spent. Carries the last underlying cause."""

    message = "Request failed after all retries"

    def __init__(
        self,
        message: str | None = None,
        *,
        url: str | None = None,
        attempts: int = 0,
        last_cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, url=url, attempts=attempts)
        self.url = url
        self.attempts = attempts
        self.last_cause = last_cause


class ParseError(HarvesterError):
    """A fragment could not be parsed. Contained at the parser boundary."""

    status_code = 422
    message = "Failed to parse content"


class PersistenceError(HarvesterError):
    """The listing store rejected a write or read."""

    status_code = 500
    message = "Persistence failure"


class ProxyValidationError(HarvesterError):
    """Proxy probe failed. Advisory only; downgrades proxy health."""

    status_code = 502
    message = "Proxy validation failed"


class CrawlAbortedError(HarvesterError):
    """The initial listing or index fetch failed, so the run cannot start."""

    status_code = 502
    message = "Crawl aborted"


class SourceNotFoundError(HarvesterError):
    """No source is configured under the requested name."""

    status_code = 404
    message = "Source not found"


class SourceAlreadyRunningError(HarvesterError):
    """A scraper process for the source is already running."""

    status_code = 409
    message = "Source is already running"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
    )


async def _harvester_error_handler(_request: Request, exc: HarvesterError) -> JSONResponse:
    """Handle HarvesterError subclasses."""
    meta = {k: str(v) for k, v in exc.details.items()} if exc.details else None
    return _envelope(exc.status_code, exc.message, meta=meta)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (422)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log the traceback and return a generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(HarvesterError, _harvester_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
