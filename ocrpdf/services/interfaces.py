"""Shared interfaces used across the extraction services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from ocrpdf.services.diagnostics import DiagnosticEvent


class DiagnosticSink(Protocol):
    """Receives the timestamped diagnostic stream (attempts, transitions, escalations)."""

    def emit(self, event: "DiagnosticEvent") -> None: ...


class MetricsClient(Protocol):
    """Interface for emitting metrics to Prometheus or a no-op sink."""

    def observe_latency(self, name: str, value: float, **labels: str) -> None: ...

    def increment(self, name: str, amount: int = 1, **labels: str) -> None: ...


__all__ = ["DiagnosticSink", "MetricsClient"]
