"""
Async HTTP client wrapper for upstream source requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.errors import MalformedRecord, UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_LATENCY, SOURCE_REQUESTS

logger = get_logger(__name__)

MAX_RETRY_AFTER_S = 10.0


class ProviderHTTPClient:
    """
    Async HTTP client tailored for the match data sources.

    404 is reported as ``None``; timeouts, transport errors, 429 and 5xx are
    retried and finally raised as UpstreamUnavailable. Any other 4xx is raised
    immediately.
    """

    def __init__(
        self,
        source: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float = 10.0,
        max_retries: int = 2,
        backoff_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._source = source
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._max_retries = max_retries
        self._backoff_s = backoff_s
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        endpoint: str = "unknown",
        timeout_s: float | None = None,
    ) -> Any:
        """GET ``path`` and decode JSON. Returns None on 404."""
        return await self._request("GET", path, params=params, endpoint=endpoint, timeout_s=timeout_s)

    async def post_json(
        self,
        path: str,
        body: dict[str, Any],
        endpoint: str = "unknown",
        timeout_s: float | None = None,
    ) -> Any:
        """POST a JSON body and decode the JSON response. Returns None on 404."""
        return await self._request("POST", path, json=body, endpoint=endpoint, timeout_s=timeout_s)

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        timeout = httpx.Timeout(timeout_s, connect=5.0) if timeout_s else None
        attempts = self._max_retries + 1
        last_reason = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, attempts + 1):
            start_time = time.perf_counter()
            outcome = "error"
            delay = self._backoff_s * attempt
            try:
                kwargs: dict[str, Any] = {"params": params, "json": json}
                if timeout is not None:
                    kwargs["timeout"] = timeout
                resp = await self._client.request(method, path, **kwargs)
                outcome = str(resp.status_code)

                if resp.status_code == 404:
                    logger.debug("source_not_found", source=self._source, path=path)
                    return None

                if resp.status_code == 429:
                    last_reason, last_status = "rate limited", 429
                    logger.warning(
                        "source_rate_limited", source=self._source, path=path, attempt=attempt
                    )
                    try:
                        delay = min(float(resp.headers.get("Retry-After", delay)), MAX_RETRY_AFTER_S)
                    except ValueError:
                        pass
                elif resp.status_code >= 500:
                    last_reason, last_status = f"server error {resp.status_code}", resp.status_code
                    logger.warning(
                        "source_server_error",
                        source=self._source,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                elif resp.status_code >= 400:
                    logger.error(
                        "source_http_error", source=self._source, path=path, status=resp.status_code
                    )
                    raise UpstreamUnavailable(
                        self._source, f"client error {resp.status_code}", status_code=resp.status_code
                    )
                else:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        outcome = "malformed"
                        raise MalformedRecord(self._source, f"invalid JSON from {path}") from exc
                    logger.debug(
                        "source_request_success",
                        source=self._source,
                        path=path,
                        status=resp.status_code,
                        latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    )
                    return payload

            except httpx.TimeoutException:
                outcome = "timeout"
                last_reason, last_status = "timeout", None
                logger.warning("source_timeout", source=self._source, path=path, attempt=attempt)

            except httpx.TransportError as exc:
                outcome = "transport_error"
                last_reason, last_status = f"transport error: {exc}", None
                logger.warning(
                    "source_transport_error",
                    source=self._source,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )

            finally:
                SOURCE_REQUESTS.labels(source=self._source, endpoint=endpoint, outcome=outcome).inc()
                SOURCE_LATENCY.labels(source=self._source).observe(time.perf_counter() - start_time)

            if attempt < attempts:
                await asyncio.sleep(delay)

        raise UpstreamUnavailable(self._source, last_reason, status_code=last_status)
