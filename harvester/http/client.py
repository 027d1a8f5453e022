"""Resilient HTTP client: the single choke point for every outbound request.

Pipeline per logical call: rate-limit slot → proxy config → browser-like
headers → attempt → on failure retry per ``RetryPolicy`` → activity event for
every attempt → one metrics record for the whole call.

Success is any status in [200, 400). Transport errors and other statuses are
retried up to ``max_retries`` additional times; after that the call fails with
``ExhaustedRetriesError`` carrying the last underlying cause. The caller
decides whether to skip the unit of work or abort the run.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from harvester.middleware.error_handler import ExhaustedRetriesError, TransportError
from harvester.monitoring.activity_log import ActivityLog, ActivityStatus
from harvester.monitoring.metrics import MetricsCollector
from harvester.proxy.manager import ProxyPoolManager
from harvester.proxy.types import NO_PROXY, ProxyRequestConfig
from harvester.resilience.rate_limiter import RequestSpacer
from harvester.resilience.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Browser-like header set. Target sites gate on these.
# ---------------------------------------------------------------------------

USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
]

DEFAULT_ACCEPT_LANGUAGE = "he-IL,he;q=0.9,en-US;q=0.8,en;q=0.7"


def browser_headers(user_agent: str, accept_language: str = DEFAULT_ACCEPT_LANGUAGE) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
        "Accept-Language": accept_language,
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }


class HttpClientConfig(BaseModel):
    """Politeness and resilience policy for one client instance. No defaults."""

    rate_limit_delay_ms: int = Field(ge=0)
    max_retries: int = Field(ge=0)
    retry_delay_ms: int = Field(ge=0)
    retry_backoff_multiplier: float = Field(ge=1.0)
    timeout_seconds: float = Field(gt=0)
    use_proxy: bool


class ResilientHttpClient:
    """Rate-limited, retrying, proxy-aware HTTP client for one scraper source.

    All collaborators are injected. ``sleep`` and ``clock`` exist so tests can
    drive time deterministically.
    """

    def __init__(
        self,
        source: str,
        config: HttpClientConfig,
        *,
        proxy_manager: ProxyPoolManager | None = None,
        activity_log: ActivityLog | None = None,
        metrics: MetricsCollector | None = None,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
        user_agent: str | None = None,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._config = config
        self._proxy_manager = proxy_manager
        self._activity_log = activity_log
        self._metrics = metrics
        self._clock = clock
        self._headers = browser_headers(user_agent or random.choice(USER_AGENTS), accept_language)

        self._spacer = RequestSpacer(config.rate_limit_delay_ms, clock=clock, sleep=sleep)
        self._retry = RetryPolicy(
            max_retries=config.max_retries,
            base_delay_ms=config.retry_delay_ms,
            multiplier=config.retry_backoff_multiplier,
            jitter=jitter,
            sleep=sleep,
        )

    @property
    def config(self) -> HttpClientConfig:
        return self._config

    @property
    def source(self) -> str:
        return self._source

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self.request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST ``body``: dicts and lists are sent as JSON, anything else as raw content."""
        if isinstance(body, (dict, list)):
            return await self.request("POST", url, json=body, headers=headers)
        return await self.request("POST", url, content=body, headers=headers)

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Issue one logical request with rate limiting and retries."""
        # 1. Wait out the rate-limit spacing
        await self._spacer.wait_for_slot()

        call_started = self._clock()
        attempts = self._retry.max_attempts
        last_cause: TransportError | None = None

        for attempt in range(1, attempts + 1):
            # Retries skip the rate-limit slot and wait only the backoff delay
            if attempt > 1:
                await self._retry.wait(attempt - 1)

            # 2. Attach proxy and headers
            proxy = self._proxy_config()
            attempt_started = self._clock()

            # 3. Issue the attempt
            try:
                response = await self._send(method, url, proxy, params, json, content, headers)
            except TransportError as exc:
                latency_ms = (self._clock() - attempt_started) * 1000
                self._spacer.mark_finished()
                last_cause = exc
                self._on_attempt_failed(method, url, attempt, attempts, proxy, latency_ms, exc)
                continue

            # 5. Success
            latency_ms = (self._clock() - attempt_started) * 1000
            self._spacer.mark_finished()
            self._on_attempt_succeeded(method, url, attempt, proxy, latency_ms, response)
            if self._metrics is not None:
                self._metrics.record_request(self._source, latency_ms, True)
            return response

        # 4. Exhausted
        total_ms = (self._clock() - call_started) * 1000
        if self._metrics is not None:
            self._metrics.record_request(self._source, total_ms, False)
        raise ExhaustedRetriesError(
            f"{method} {url} failed after {attempts} attempts: {last_cause}",
            url=url,
            attempts=attempts,
            last_cause=last_cause,
        ) from last_cause

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _proxy_config(self) -> ProxyRequestConfig:
        if not self._config.use_proxy or self._proxy_manager is None:
            return NO_PROXY
        return self._proxy_manager.get_request_config()

    async def _send(
        self,
        method: str,
        url: str,
        proxy: ProxyRequestConfig,
        params: dict[str, Any] | None,
        json: Any,
        content: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        """Run a single attempt; any failure surfaces as ``TransportError``."""
        try:
            async with httpx.AsyncClient(
                proxy=proxy.url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._headers,
                follow_redirects=True,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or type(exc).__name__, url=url) from exc

        if not 200 <= response.status_code < 400:
            raise TransportError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response

    def _on_attempt_failed(
        self,
        method: str,
        url: str,
        attempt: int,
        attempts: int,
        proxy: ProxyRequestConfig,
        latency_ms: float,
        exc: TransportError,
    ) -> None:
        final = attempt >= attempts
        if self._proxy_manager is not None and proxy.enabled:
            self._proxy_manager.record_request(False, latency_ms)
            self._proxy_manager.record_error(exc.message, url)

        log = logger.error if final else logger.warning
        log(
            "%s %s failed (attempt %d/%d): %s",
            method,
            url,
            attempt,
            attempts,
            exc.message,
            extra={
                "source": self._source,
                "url": url,
                "attempt": attempt,
                "latency_ms": round(latency_ms, 1),
                "error_reason": exc.message,
                "proxy_host": proxy.host,
            },
        )
        if self._activity_log is not None:
            self._activity_log.log_http_request(
                self._source,
                url,
                ActivityStatus.ERROR if final else ActivityStatus.RETRY,
                method=method,
                status_code=exc.response_status,
                latency_ms=latency_ms,
                attempt=attempt,
                proxy_host=proxy.host,
                error=exc.message,
            )

    def _on_attempt_succeeded(
        self,
        method: str,
        url: str,
        attempt: int,
        proxy: ProxyRequestConfig,
        latency_ms: float,
        response: httpx.Response,
    ) -> None:
        if self._proxy_manager is not None and proxy.enabled:
            self._proxy_manager.record_request(True, latency_ms)

        logger.debug(
            "%s %s -> %d (%.0fms)",
            method,
            url,
            response.status_code,
            latency_ms,
            extra={
                "source": self._source,
                "url": url,
                "attempt": attempt,
                "latency_ms": round(latency_ms, 1),
                "proxy_host": proxy.host,
            },
        )
        if self._activity_log is not None:
            self._activity_log.log_http_request(
                self._source,
                url,
                ActivityStatus.SUCCESS,
                method=method,
                status_code=response.status_code,
                latency_ms=latency_ms,
                attempt=attempt,
                proxy_host=proxy.host,
            )
