"""Error hierarchy and FastAPI handlers."""

from harvester.middleware.error_handler import (
    CrawlAbortedError,
    ExhaustedRetriesError,
    HarvesterError,
    NetworkError,
    ParseError,
    PersistenceError,
    ProxyValidationError,
    SourceAlreadyRunningError,
    SourceNotFoundError,
    TransportError,
    ValidationError,
    register_error_handlers,
)

__all__ = [
    "CrawlAbortedError",
    "ExhaustedRetriesError",
    "HarvesterError",
    "NetworkError",
    "ParseError",
    "PersistenceError",
    "ProxyValidationError",
    "SourceAlreadyRunningError",
    "SourceNotFoundError",
    "TransportError",
    "ValidationError",
    "register_error_handlers",
]
