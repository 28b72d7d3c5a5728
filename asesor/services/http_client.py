"""Shared httpx plumbing: request timeout, exponential-backoff retries and
per-request metrics.

Both the Google and the Twilio clients subclass ``RetryingHTTPClient``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from asesor.errors import DownstreamUnavailable
from asesor.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class RetryingHTTPClient:
    """Thin wrapper around ``httpx.Client`` with automatic retries.

    Timeouts, connection errors and 5xx responses are retried; 4xx
    responses are not.  When every attempt fails a ``DownstreamUnavailable``
    (or ``error_class``) is raised, so callers only ever handle one type.
    """

    service_name = "http"
    error_class: type[DownstreamUnavailable] = DownstreamUnavailable
    retry_timeouts = True

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    def close(self) -> None:
        self._client.close()

    def _request_headers(self) -> dict[str, str]:
        return {}

    def _fail(self, message: str, status_code: int | None = None) -> DownstreamUnavailable:
        return self.error_class(self.service_name, message, status_code=status_code)

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        operation = f"{method} {url.split('?')[0]}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    data=data,
                    headers=self._request_headers(),
                )
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    metrics.record_failure(
                        self.service_name, operation,
                        error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
                    )
                    kind = "Server" if response.status_code >= 500 else "Client"
                    raise self._fail(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(self.service_name, operation, latency_ms=elapsed)
                return response.json()

            except httpx.TimeoutException as exc:
                metrics.record_failure(self.service_name, operation, error_type="timeout")
                if not self.retry_timeouts:
                    raise self._fail(f"request timed out: {exc}") from exc
                last_error = exc
                logger.warning(
                    "%s attempt %d/%d timed out. Retrying in %.1fs…",
                    self.service_name, attempt, MAX_RETRIES,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except httpx.ConnectError as exc:
                metrics.record_failure(self.service_name, operation, error_type="connect")
                last_error = exc
                logger.warning(
                    "%s attempt %d/%d could not connect. Retrying in %.1fs…",
                    self.service_name, attempt, MAX_RETRIES,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except DownstreamUnavailable as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "%s server error on attempt %d/%d. Retrying…",
                        self.service_name, attempt, MAX_RETRIES,
                    )
                else:
                    raise

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise self._fail(f"request failed after {MAX_RETRIES} attempts: {last_error}")
