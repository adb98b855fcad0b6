"""Metrics utilities for the OCR extraction orchestrator."""

from __future__ import annotations

import logging
from typing import ClassVar

from prometheus_client import Counter, Histogram, start_http_server

from .interfaces import MetricsClient

LOG = logging.getLogger(__name__)


class PrometheusMetrics(MetricsClient):
    """Prometheus-backed metrics client.

    Counters are keyed by (stage, name, outcome): request attempts use the
    operation as stage and the verdict as outcome; finished documents use
    the tier as stage and the outcome status.
    """

    _LATENCY = Histogram(
        "ocrpdf_latency_seconds",
        "Stage latency in seconds",
        ["stage", "name"],
    )
    _COUNTERS = Counter(
        "ocrpdf_events_total",
        "Extraction event counts",
        ["stage", "name", "outcome"],
    )
    _DEFAULT_INSTANCE: ClassVar["PrometheusMetrics | None"] = None

    def observe_latency(self, name: str, value: float, **labels: str) -> None:
        stage = labels.get("stage", "unknown")
        PrometheusMetrics._LATENCY.labels(stage=stage, name=name).observe(value)

    def increment(self, name: str, amount: int = 1, **labels: str) -> None:
        stage = labels.get("stage", "unknown")
        outcome = labels.get("outcome", "none")
        PrometheusMetrics._COUNTERS.labels(stage=stage, name=name, outcome=outcome).inc(
            amount
        )

    @classmethod
    def default(cls) -> "PrometheusMetrics":
        if cls._DEFAULT_INSTANCE is None:
            cls._DEFAULT_INSTANCE = cls()
        return cls._DEFAULT_INSTANCE

    @classmethod
    def serve(cls, port: int) -> "PrometheusMetrics":
        """Expose /metrics over HTTP for the lifetime of the process."""
        metrics = cls.default()
        start_http_server(port)
        LOG.info("metrics_server_started", extra={"port": port})
        return metrics


class NullMetrics(MetricsClient):
    """No-op metrics implementation."""

    def observe_latency(self, name: str, value: float, **labels: str) -> None:
        LOG.debug("Metric ignored: %s=%s labels=%s", name, value, labels)

    def increment(self, name: str, amount: int = 1, **labels: str) -> None:
        LOG.debug("Counter ignored: %s+=%s labels=%s", name, amount, labels)


__all__ = ["PrometheusMetrics", "NullMetrics"]
