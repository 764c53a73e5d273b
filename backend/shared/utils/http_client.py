"""
Async HTTP client wrapper for upstream requests.
Single attempt per call with a fixed timeout; records metrics per request.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS

logger = get_logger(__name__)


class UpstreamUnavailable(Exception):
    """Raised when the upstream times out, is unreachable, or answers with a non-success."""

    def __init__(self, path: str, reason: str, status: int | None = None) -> None:
        self.path = path
        self.reason = reason
        self.status = status
        detail = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Upstream request to {path} failed: {reason}{detail}")


class UpstreamHTTPClient:
    """
    Async JSON client for the read-only upstream statistics API.

    Failed calls are never retried here; the next scheduled cycle or the
    next caller is the retry.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = self._settings.upstream_base_url.rstrip("/")
        self._timeout = self._settings.upstream_timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": self._settings.upstream_user_agent},
            timeout=httpx.Timeout(self._timeout),
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
    ) -> Any:
        """
        GET ``path`` and decode the JSON body.

        Args:
            path: API path relative to the base URL.
            params: Query parameters.
            endpoint: Low-cardinality label for metrics.

        Raises:
            UpstreamUnavailable: On timeout, transport error, non-2xx status
                or an undecodable body.
        """
        if not self._client:
            raise RuntimeError("UpstreamHTTPClient not started. Call start() first.")

        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await self._client.get(path, params=params)
            status = str(resp.status_code)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            status = "timeout"
            logger.warning("upstream_timeout", path=path, timeout_s=self._timeout)
            raise UpstreamUnavailable(path, "timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("upstream_http_error", path=path, status=exc.response.status_code)
            raise UpstreamUnavailable(
                path, "non-success response", exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("upstream_request_error", path=path, error=str(exc))
            raise UpstreamUnavailable(path, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            status = "invalid_body"
            logger.warning("upstream_invalid_body", path=path, error=str(exc))
            raise UpstreamUnavailable(path, "response body is not JSON") from exc
        finally:
            UPSTREAM_REQUESTS.labels(endpoint=endpoint, status=status).inc()
            UPSTREAM_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - start_time)

        logger.debug(
            "upstream_request_success",
            path=path,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return data
