"""CloudWatch custom metrics for every external call the advisor makes.

Covers the Anthropic completion calls, the Google Sheets / Docs / Calendar
requests, Twilio sends and each tool execution.

* Data points are buffered in memory under a lock.
* With ``METRICS_ENABLED=true`` a daemon thread flushes the buffer to
  CloudWatch every ``FLUSH_INTERVAL_SECONDS``; otherwise data points are only
  logged at DEBUG level.
* One ``put_metric_data`` call carries at most ``MAX_BATCH_SIZE`` points.

>>> from asesor.services.metrics import metrics
>>> metrics.record_success("google", "POST sheets.append", latency_ms=84.2)
>>> metrics.record_failure("anthropic", "completion", error_type="APITimeoutError")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "AsesorWhatsApp"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3  # noqa: PLC0415 (optional dependency, ``aws`` extra)

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(
            _datum("ExternalAPI/RequestCount", now, 1, "Count",
                   service_dim, {"Name": "Status", "Value": "success"})
        )
        self._append(
            _datum("ExternalAPI/Latency", now, latency_ms, "Milliseconds",
                   service_dim, {"Name": "Operation", "Value": operation})
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(
            _datum("ExternalAPI/RequestCount", now, 1, "Count",
                   service_dim, {"Name": "Status", "Value": "failure"})
        )
        self._append(
            _datum("ExternalAPI/ErrorCount", now, 1, "Count",
                   service_dim, {"Name": "ErrorType", "Value": error_type})
        )
        if latency_ms > 0:
            self._append(
                _datum("ExternalAPI/Latency", now, latency_ms, "Milliseconds",
                       service_dim, {"Name": "Operation", "Value": operation})
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


def _datum(
    name: str,
    timestamp: datetime,
    value: float,
    unit: str,
    *dimensions: dict[str, str],
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": list(dimensions),
        "Timestamp": timestamp,
        "Value": value,
        "Unit": unit,
    }


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
